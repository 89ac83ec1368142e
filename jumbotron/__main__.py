# SPDX-License-Identifier: Apache-2.0
from .main import main

raise SystemExit(main())

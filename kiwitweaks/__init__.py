# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""KiwiTweaks storefront API: accounts, licenses, payments and orders."""

__version__ = "1.0.0"

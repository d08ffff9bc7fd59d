# -*- coding: utf-8 -*-
"""Constant values"""

from __future__ import annotations
import os

"""Copyright 2019-2023 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

__version__ = "1.0.0"

SPF_VERSION_TAG = "v=spf1"
SYNTAX_ERROR_MARKER = "➞"

# Microsoft 365 publishes a deep chain of includes; it is never expanded
MICROSOFT_365_DOMAIN_SUBSTRING = "protection.outlook.com"
MICROSOFT_365_INCLUDE = "include:spf.protection.outlook.com"

# RFC 7208 § 4.6.4 and § 3.4
MAX_DNS_LOOKUPS = 10
SPF_RECORD_ADVISED_BYTES = 450
SPF_RECORD_MAX_BYTES = 512

DEFAULT_DNS_SERVER = "8.8.8.8"
DEFAULT_MAX_DEPTH = 5
DEFAULT_DNS_TIMEOUT = 2.0
DEFAULT_DNS_TIMEOUT_RETRIES = 2
DNS_CACHE_MAX_LEN = 200000
DNS_CACHE_MAX_AGE_SECONDS = 1800

env = os.environ

if "SPF_DNS_SERVER" in env:
    DEFAULT_DNS_SERVER = env["SPF_DNS_SERVER"]
if "SPF_MAX_DEPTH" in env:
    DEFAULT_MAX_DEPTH = int(env["SPF_MAX_DEPTH"])
if "DNS_CACHE_MAX_LEN" in env:
    DNS_CACHE_MAX_LEN = int(env["DNS_CACHE_MAX_LEN"])
if "DNS_CACHE_MAX_AGE_SECONDS" in env:
    DNS_CACHE_MAX_AGE_SECONDS = int(env["DNS_CACHE_MAX_AGE_SECONDS"])

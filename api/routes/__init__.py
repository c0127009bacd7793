# SPDX-License-Identifier: Apache-2.0

"""
HTTP routes of the approval API.
"""

# SPDX-License-Identifier: Apache-2.0

"""
Background processes of the approval workflow.
"""

# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the approval workflow engine.

This package contains pure business logic: strategy resolution, auto-approval
evaluation, request codes and fingerprints, and the error taxonomy.
All domain functions are testable without external dependencies.
"""

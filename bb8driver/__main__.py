# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The bb8driver Authors

"""Main entry point for running bb8driver as a module."""

from bb8driver.cli import main

if __name__ == "__main__":
    main()

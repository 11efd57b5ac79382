# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The bb8driver Authors

"""Bluetooth Low Energy protocol definitions."""

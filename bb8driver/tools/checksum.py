# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The bb8driver Authors

"""
Helper functions for calculating checksums.
"""


def sum_complement(data: bytes) -> int:
    """
    Computes the Sphero packet checksum: the sum of all bytes in ``data``,
    truncated to 8 bits and inverted.

    Args:
        data: The byte data to perform the checksum on. For Sphero packets
            this is everything after the two start-of-packet bytes.

    Returns:
        The calculated checksum.
    """
    return ~sum(data) & 0xFF

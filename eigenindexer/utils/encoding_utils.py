"""
Common encoding utility functions for chain data
"""

from typing import Union

from eth_utils import to_checksum_address
from hexbytes import HexBytes


def bytes_to_hex_str_auto(byte_arr: Union[bytes, str]) -> str:
    """
    Convert a byte array to a lower case hex string
    with intelligent conversion of bytes and string representations.
    Some APIs may return byte array as bytes, HexBytes, or a string,
    depending on the nodes and paths they use.
    HexBytes.hex() also changed its 0x prefix behavior across versions.

    :param byte_arr: The byte array to convert.
    :return: The resulting hex string.
    """
    if isinstance(byte_arr, (bytes, bytearray)):
        hex_str = bytes(byte_arr).hex()
    else:
        hex_str = str(byte_arr)
    hex_str = hex_str.lower()
    if hex_str.startswith("0x"):
        return hex_str
    return "0x" + hex_str


def to_bytes_auto(value: Union[bytes, str]) -> bytes:
    """
    Convert bytes, HexBytes or a hex string to bytes.
    Logs decoded from raw JSON carry hex strings where web3 returns HexBytes.

    :param value: The value to convert.
    :return: The resulting byte array.
    """
    return bytes(HexBytes(value))


def topic_to_address(topic: Union[bytes, str]) -> str:
    """
    Convert an indexed address topic (a 32-byte word) to a checksum address.

    :param topic: The topic.
    :return: The checksum address.
    """
    word = to_bytes_auto(topic)
    if len(word) != 32:
        raise ValueError(f"Address topic must be 32 bytes, got {len(word)}")
    return to_checksum_address(word[-20:])


def le_bytes_to_int(byte_arr: bytes) -> int:
    """
    Convert a little-endian byte array to an integer.
    The deposit contract encodes amounts and indices as little-endian uint64.

    :param byte_arr: The byte array to convert.
    :return: The resulting integer.
    """
    return int.from_bytes(bytes(byte_arr), byteorder="little")

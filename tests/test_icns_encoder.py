import unittest
import os
import sys
import struct
from io import BytesIO
from PIL import Image
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from src.errors import EncodingError
from src.icon_types import ICNS_SIZES, IcnsEntry
from src.icns_encoder import encode_icns, read_icns


def make_png(edge):
    out = BytesIO()
    Image.new("RGBA", (edge, edge), (10, 120, 240, 128)).save(out, format="PNG")
    return out.getvalue()


class TestIcnsEncoder(unittest.TestCase):

    def setUp(self):
        self.entries = [IcnsEntry(size.tag, make_png(size.edge)) for size in ICNS_SIZES]

    def test_header_magic_and_total_length(self):
        icns = encode_icns(self.entries)
        self.assertEqual(icns[:4], b"icns")
        self.assertEqual(struct.unpack(">I", icns[4:8])[0], len(icns))
        self.assertEqual(len(icns), 8 + sum(8 + len(e.png) for e in self.entries))

    def test_entry_lengths_include_own_header(self):
        icns = encode_icns(self.entries)
        pos = 8
        for entry in self.entries:
            tag, length = struct.unpack_from(">4sI", icns, pos)
            self.assertEqual(tag.decode("ascii"), entry.tag)
            self.assertEqual(length, 8 + len(entry.png))
            self.assertEqual(icns[pos + 8:pos + length], entry.png)
            pos += length
        self.assertEqual(pos, len(icns))

    def test_caller_order_is_preserved(self):
        icns = encode_icns(self.entries)
        tags = [entry.tag for entry in read_icns(icns)]
        self.assertEqual(tags, ["icp4", "icp5", "icp6", "ic07", "ic08", "ic09", "ic10"])

        reversed_tags = [entry.tag for entry in read_icns(encode_icns(reversed(self.entries)))]
        self.assertEqual(reversed_tags, list(reversed(tags)))

    def test_read_icns_round_trip(self):
        self.assertEqual(read_icns(encode_icns(self.entries)), self.entries)

    def test_empty_entry_set_fails(self):
        with self.assertRaises(EncodingError):
            encode_icns([])

    def test_unknown_tag_fails(self):
        with self.assertRaises(EncodingError):
            encode_icns([IcnsEntry("is32", make_png(16))])

    def test_empty_payload_fails(self):
        with self.assertRaises(EncodingError):
            encode_icns([IcnsEntry("icp4", b"")])

    def test_read_icns_rejects_bad_length_field(self):
        icns = bytearray(encode_icns(self.entries[:1]))
        struct.pack_into(">I", icns, 4, len(icns) + 1)
        with self.assertRaises(EncodingError):
            read_icns(bytes(icns))

    def test_read_icns_rejects_wrong_magic(self):
        with self.assertRaises(EncodingError):
            read_icns(b"icon\x00\x00\x00\x08")

if __name__ == '__main__':
    unittest.main()

"""Tests for the control channel response framer."""

import unittest

from ftpwire.response import Response, ResponseFramer


class TestResponse(unittest.TestCase):
    """Test cases for the Response value type."""

    def test_classification(self) -> None:
        """Test mark, error and multiline classification."""
        self.assertTrue(Response(150, "150 Opening data connection").is_mark)
        self.assertTrue(Response(125, "125 Data connection already open").is_mark)
        self.assertFalse(Response(226, "226 Transfer complete").is_mark)
        self.assertTrue(Response(550, "550 No such file").is_error)
        self.assertTrue(Response(421, "421 Service not available").is_error)
        self.assertFalse(Response(331, "331 Password required").is_error)

    def test_lines(self) -> None:
        """Test splitting a response into its lines."""
        response = Response(211, "211-Features:\n MDTM\n211 End", is_multiline=True)
        self.assertEqual(response.lines, ["211-Features:", " MDTM", "211 End"])
        self.assertEqual(str(response), response.text)


class TestResponseFramer(unittest.TestCase):
    """Test cases for ResponseFramer."""

    def setUp(self) -> None:
        """Set up test fixtures."""
        self.framer = ResponseFramer()

    def test_single_line(self) -> None:
        """Test framing a single line reply."""
        responses = self.framer.feed("220 Service ready\r\n")

        self.assertEqual(responses, [Response(220, "220 Service ready")])

    def test_several_responses_in_one_chunk(self) -> None:
        """Test several replies arriving in one chunk."""
        responses = self.framer.feed("331 Password required\r\n230 Logged in\r\n")

        self.assertEqual([r.code for r in responses], [331, 230])

    def test_bare_code(self) -> None:
        """Test a reply made of the code alone."""
        responses = self.framer.feed("200\r\n")

        self.assertEqual(responses, [Response(200, "200")])

    def test_partial_line_is_buffered(self) -> None:
        """Test that an incomplete line waits for more data."""
        self.assertEqual(self.framer.feed("215 UNIX Ty"), [])
        responses = self.framer.feed("pe: L8\r\n")

        self.assertEqual(responses, [Response(215, "215 UNIX Type: L8")])

    def test_lf_only_line_endings(self) -> None:
        """Test replies terminated by a bare LF."""
        responses = self.framer.feed("200 OK\n250 Done\n")

        self.assertEqual([r.code for r in responses], [200, 250])

    def test_multiline_joined(self) -> None:
        """Test that continuation lines form one response joined by newlines."""
        responses = self.framer.feed(
            "211-Features:\r\n MDTM\r\n SIZE\r\n UTF8\r\n211 End\r\n"
        )

        self.assertEqual(len(responses), 1)
        response = responses[0]
        self.assertEqual(response.code, 211)
        self.assertTrue(response.is_multiline)
        self.assertEqual(response.text, "211-Features:\n MDTM\n SIZE\n UTF8\n211 End")

    def test_multiline_split_across_chunks(self) -> None:
        """Test a multiline reply split across chunks."""
        self.assertEqual(self.framer.feed("230-Welcome\r\n230-Be n"), [])
        self.assertTrue(self.framer.in_block)
        responses = self.framer.feed("ice\r\n230 Logged in\r\n")

        self.assertEqual(len(responses), 1)
        self.assertEqual(responses[0].lines, ["230-Welcome", "230-Be nice", "230 Logged in"])
        self.assertFalse(self.framer.in_block)

    def test_multiline_ignores_other_codes(self) -> None:
        """Test that only the opening code followed by a space ends a block."""
        responses = self.framer.feed(
            "213-Status:\r\n200 not the end\r\n213-still going\r\n213 End\r\n"
        )

        self.assertEqual(len(responses), 1)
        self.assertEqual(responses[0].code, 213)
        self.assertEqual(len(responses[0].lines), 4)

    def test_multiline_followed_by_single_line(self) -> None:
        """Test a single line reply right after a block."""
        responses = self.framer.feed("211-Features:\r\n MDTM\r\n211 End\r\n200 OK\r\n")

        self.assertEqual([r.code for r in responses], [211, 200])

    def test_noise_outside_block_is_dropped(self) -> None:
        """Test that lines without a code outside a block are dropped."""
        with self.assertLogs("ftpwire.response", level="DEBUG"):
            responses = self.framer.feed("garbage line\r\n200 OK\r\n")

        self.assertEqual([r.code for r in responses], [200])

    def test_reset(self) -> None:
        """Test that reset discards buffered input."""
        self.framer.feed("211-Features:\r\n MDTM")
        self.framer.reset()

        self.assertFalse(self.framer.in_block)
        self.assertEqual(self.framer.feed("200 OK\r\n"), [Response(200, "200 OK")])


if __name__ == "__main__":
    unittest.main()

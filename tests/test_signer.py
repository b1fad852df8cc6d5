import unittest
from datetime import datetime, timedelta, timezone

from doubao_bridge.signer import (
    EMPTY_PAYLOAD_HASH,
    STSCredentials,
    canonical_headers,
    canonical_query,
    canonical_request,
    derive_signing_key,
    sha256_hex,
    sign_request,
)

EXAMPLE_SECRET = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"
FIXED_NOW = datetime(2015, 8, 30, 12, 36, 0, tzinfo=timezone.utc)


class TestCanonicalForm(unittest.TestCase):
    def test_empty_payload_hash_constant(self) -> None:
        self.assertEqual(sha256_hex(b""), EMPTY_PAYLOAD_HASH)

    def test_query_is_sorted_and_percent_encoded(self) -> None:
        self.assertEqual(
            canonical_query("b=2&a=hello world&c=x%2Fy&a=0"),
            "a=0&a=hello%20world&b=2&c=x%2Fy",
        )
        self.assertEqual(canonical_query(""), "")
        self.assertEqual(canonical_query("Flag="), "Flag=")

    def test_headers_are_lowercased_trimmed_and_filtered(self) -> None:
        block, signed = canonical_headers(
            {
                "X-Amz-Date": "20150830T123600Z",
                "Host": "example.com",
                "User-Agent": "ignored",
                "Authorization": "ignored",
                "Content-Length": "12",
                "X-Custom": "  a   b  ",
            }
        )
        self.assertEqual(block, "host:example.com\nx-amz-date:20150830T123600Z\nx-custom:a b\n")
        self.assertEqual(signed, "host;x-amz-date;x-custom")

    def test_canonical_request_layout(self) -> None:
        request, signed = canonical_request(
            "get",
            "https://example.com/some path?b=1&a=2",
            {"Host": "example.com"},
            EMPTY_PAYLOAD_HASH,
        )
        self.assertEqual(
            request.split("\n"),
            ["GET", "/some%20path", "a=2&b=1", "host:example.com", "", "host", EMPTY_PAYLOAD_HASH],
        )
        self.assertEqual(signed, "host")


class TestSignRequest(unittest.TestCase):
    def test_derive_signing_key_matches_published_example(self) -> None:
        key = derive_signing_key(EXAMPLE_SECRET, "20120215", "us-east-1", "iam")
        self.assertEqual(key.hex(), "f4780e2d9f65fa895f9c67b32ce1baf0b0d8a43505a000a1a9e090d414db404d")

    def test_get_vanilla_vector(self) -> None:
        headers = sign_request(
            STSCredentials(access_key="AKIDEXAMPLE", secret_key=EXAMPLE_SECRET),
            "GET",
            "https://example.amazonaws.com/",
            {},
            "",
            "service",
            "us-east-1",
            now=FIXED_NOW,
        )

        self.assertEqual(headers["X-Amz-Date"], "20150830T123600Z")
        self.assertEqual(headers["Host"], "example.amazonaws.com")
        self.assertNotIn("X-Amz-Security-Token", headers)
        self.assertEqual(
            headers["Authorization"],
            "AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/20150830/us-east-1/service/aws4_request, "
            "SignedHeaders=host;x-amz-date, "
            "Signature=5fa00fa31553b73ebf1942676e86291e8372ff2a2260956d9b8aae1d763fbf31",
        )

    def test_session_token_is_signed_and_input_headers_untouched(self) -> None:
        creds = STSCredentials(access_key="AK", secret_key="SK", session_token="TOKEN")
        original = {"Origin": "https://www.doubao.com", "User-Agent": "ua"}

        headers = sign_request(
            creds,
            "GET",
            "https://imagex.bytedanceapi.com/?Action=ApplyImageUpload",
            original,
            EMPTY_PAYLOAD_HASH,
            "imagex",
            "cn-north-1",
            now=FIXED_NOW,
        )

        self.assertEqual(original, {"Origin": "https://www.doubao.com", "User-Agent": "ua"})
        self.assertEqual(headers["X-Amz-Security-Token"], "TOKEN")
        self.assertEqual(headers["User-Agent"], "ua")
        self.assertIn("Credential=AK/20150830/cn-north-1/imagex/aws4_request", headers["Authorization"])
        self.assertIn("SignedHeaders=host;origin;x-amz-date;x-amz-security-token,", headers["Authorization"])

    def test_signature_is_deterministic_and_depends_on_payload(self) -> None:
        creds = STSCredentials(access_key="AK", secret_key="SK")
        url = "https://imagex.bytedanceapi.com/?Action=CommitImageUpload"

        def sign(payload_hash: str, now: datetime = FIXED_NOW) -> str:
            return sign_request(creds, "POST", url, {}, payload_hash, "imagex", "cn-north-1", now=now)["Authorization"]

        self.assertEqual(sign(sha256_hex(b"{}")), sign(sha256_hex(b"{}")))
        self.assertNotEqual(sign(sha256_hex(b"{}")), sign(sha256_hex(b"[]")))
        self.assertEqual(sign(""), sign(EMPTY_PAYLOAD_HASH))
        self.assertNotEqual(sign(EMPTY_PAYLOAD_HASH), sign(EMPTY_PAYLOAD_HASH, FIXED_NOW + timedelta(seconds=1)))

    def test_clock_offsets_are_normalised_to_utc(self) -> None:
        creds = STSCredentials(access_key="AK", secret_key="SK")
        shifted = FIXED_NOW.astimezone(timezone(timedelta(hours=8)))

        a = sign_request(creds, "GET", "https://h/", {}, "", "s", "r", now=FIXED_NOW)
        b = sign_request(creds, "GET", "https://h/", {}, "", "s", "r", now=shifted)

        self.assertEqual(a, b)


if __name__ == "__main__":
    unittest.main()

"""Tests for stack parsing and error fingerprinting."""

from pulsewatch.processing.fingerprint import (
    frame_identity,
    generate_fingerprint,
    group_id,
    normalize_filename,
    normalize_message,
    normalize_page_url,
)
from pulsewatch.processing.stacktrace import StackFrame, in_app_frames, parse_stack, parse_stack_line

CHROME_STACK = """TypeError: Cannot read properties of undefined (reading 'id')
    at renderCart (https://shop.example/assets/app.3f9a2b7c.js:1:2041)
    at updateView (https://shop.example/assets/app.3f9a2b7c.js:1:1500)
    at https://shop.example/node_modules/react-dom/index.js:10:20
    at dispatch (https://shop.example/assets/app.3f9a2b7c.js:1:900)"""

PYTHON_STACK = """Traceback (most recent call last):
  File "/srv/app/main.py", line 10, in <module>
    run()
  File "/srv/app/service.py", line 22, in run
    handle(order)
  File "/srv/app/handlers.py", line 5, in handle
    raise KeyError(order_id)
KeyError: 'A-1024'"""


class TestStackParsing:
    """Tests for stack trace parsing."""

    def test_chrome_frame(self):
        frame = parse_stack_line("    at render (https://x.example/bundle.js:1:1234)")
        assert frame == StackFrame("render", "https://x.example/bundle.js", 1, 1234)

    def test_chrome_anonymous_frame(self):
        frame = parse_stack_line("    at https://x.example/bundle.js:3:7")
        assert frame.function is None
        assert frame.line == 3
        assert frame.column == 7

    def test_firefox_frame(self):
        frame = parse_stack_line("render@https://x.example/bundle.js:1:1234")
        assert frame == StackFrame("render", "https://x.example/bundle.js", 1, 1234)

    def test_python_frame(self):
        frame = parse_stack_line('  File "/srv/app/handlers.py", line 5, in handle')
        assert frame == StackFrame("handle", "/srv/app/handlers.py", 5, None)

    def test_non_frame_line(self):
        assert parse_stack_line("TypeError: boom") is None

    def test_python_frames_innermost_first(self):
        frames = parse_stack(PYTHON_STACK)
        assert [f.function for f in frames] == ["handle", "run", "<module>"]

    def test_third_party_frames_dropped(self):
        frames = in_app_frames(parse_stack(CHROME_STACK))
        assert all("node_modules" not in f.file for f in frames)
        assert len(frames) == 3

    def test_third_party_kept_when_all_filtered(self):
        frames = [StackFrame("f", "/usr/lib/python3/site-packages/lib.py", 1)]
        assert in_app_frames(frames) == frames

    def test_empty_stack(self):
        assert parse_stack(None) == []
        assert parse_stack("") == []


class TestNormalization:
    """Tests for message, filename and URL normalization."""

    def test_message_placeholders(self):
        message = (
            "User 42 (bob@example.com) failed at https://api.example/v1/orders?id=7 "
            "from 10.0.0.12 with id 3f2b1c9e-8d7a-4b6c-9e5f-1a2b3c4d5e6f"
        )
        assert normalize_message(message) == (
            "User <num> (<email>) failed at <url> from <ip> with id <uuid>"
        )

    def test_hex_and_quoted_literals(self):
        assert normalize_message("bad pointer 0xdeadbeef") == "bad pointer <hex>"
        assert normalize_message("commit a1b2c3d4 missing") == "commit <hex> missing"
        assert normalize_message("Cannot find 'checkout-button'") == "Cannot find <str>"

    def test_hex_requires_digit_and_letter(self):
        assert normalize_message("feedface") == "feedface"
        assert normalize_message("12345678") == "<num>"

    def test_whitespace_collapsed(self):
        assert normalize_message("  a \n\t b  ") == "a b"

    def test_filename_drops_query_and_hash(self):
        assert normalize_filename("https://x.example/assets/app.3f9a2b7c.js?v=2#top") == "app.js"
        assert normalize_filename("/srv/app/handlers.py") == "handlers.py"
        assert normalize_filename(None) == "unknown"

    def test_page_url(self):
        assert normalize_page_url("https://shop.example/orders/1024/items?x=1#y") == "shop.example/orders/<num>/items"
        assert normalize_page_url("") == ""

    def test_frame_identity_ignores_position(self):
        a = StackFrame("render", "https://x.example/app.1234abcd.js", 1, 10)
        b = StackFrame("render", "https://x.example/app.9876fedc.js", 7, 99)
        assert frame_identity(a) == frame_identity(b) == "render@app.js"


class TestFingerprint:
    """Tests for fingerprint generation."""

    def test_deterministic(self):
        first = generate_fingerprint("error", "TypeError: x is undefined", CHROME_STACK)
        second = generate_fingerprint("error", "TypeError: x is undefined", CHROME_STACK)
        assert first == second
        assert len(first.fingerprint) == 16

    def test_equivalent_messages_group_together(self):
        a = generate_fingerprint("error", "Order 1001 not found", PYTHON_STACK)
        b = generate_fingerprint("error", "Order 2002 not found", PYTHON_STACK)
        assert a.fingerprint == b.fingerprint

    def test_line_numbers_do_not_split(self):
        shifted = CHROME_STACK.replace(":1:2041", ":1:3077").replace(":1:1500", ":2:15")
        a = generate_fingerprint("error", "boom", CHROME_STACK)
        b = generate_fingerprint("error", "boom", shifted)
        assert a.fingerprint == b.fingerprint

    def test_type_takes_part(self):
        a = generate_fingerprint("error", "boom", CHROME_STACK)
        b = generate_fingerprint("unhandledrejection", "boom", CHROME_STACK)
        assert a.fingerprint != b.fingerprint

    def test_only_top_frames_take_part(self):
        deeper = CHROME_STACK + "\n    at bootstrap (https://shop.example/assets/main.js:1:1)"
        a = generate_fingerprint("error", "boom", CHROME_STACK)
        b = generate_fingerprint("error", "boom", deeper)
        assert a.fingerprint == b.fingerprint
        assert a.stack_signature == "renderCart@app.js > updateView@app.js > dispatch@app.js"

    def test_url_fallback_without_stack(self):
        a = generate_fingerprint("resource", "Resource load failed", url="https://shop.example/orders/1?x=1")
        b = generate_fingerprint("resource", "Resource load failed", url="https://shop.example/orders/2")
        c = generate_fingerprint("resource", "Resource load failed", url="https://shop.example/cart")
        assert a.stack_signature is None
        assert a.fingerprint == b.fingerprint
        assert a.fingerprint != c.fingerprint

    def test_group_id_depends_on_dsn(self):
        fp = generate_fingerprint("error", "boom").fingerprint
        assert group_id("shop", fp) == group_id("shop", fp)
        assert group_id("shop", fp) != group_id("admin", fp)
        assert len(group_id("shop", fp)) == 32

"""Tests for search result extraction."""
import pytest

from profile_harvest.core.exceptions import InvalidArgument
from profile_harvest.services.extraction import (
    clamp_limit,
    extract_users,
    first_success,
    handle_from_url,
    parse_document,
    text_of,
)

SEARCH_HTML = """
<html>
<body>
  <div data-e2e="search-user-container">
    <div class="card">
      <a href="/@alice?lang=en"><img src="https://cdn.test/alice.jpg"><h3>Alice A</h3><p>@alice</p></a>
    </div>
    <div class="card">
      <a href="https://www.tiktok.com/@bob"><span>bob</span><span>Follow</span><span>Bobby</span></a>
      <svg data-e2e="verified-badge"></svg>
    </div>
    <div class="card">
      <a href="/@alice"><h3>Alice again</h3></a>
    </div>
    <div class="card">
      <a href="/@carol"><img data-src="https://cdn.test/carol.jpg"></a>
      <span data-e2e="search-user-nickname">Carol C</span>
    </div>
    <div class="card">
      <a href="/@dave"><h3>Dave D</h3></a>
    </div>
  </div>
</body>
</html>
"""


def handles(users):
    return [u.handle for u in users]


class TestExtractUsers:
    def test_document_order_with_limit(self):
        users = extract_users(SEARCH_HTML, 3)
        assert handles(users) == ["alice", "bob", "carol"]

    def test_duplicates_keep_first_position(self):
        users = extract_users(SEARCH_HTML, 10)
        assert handles(users) == ["alice", "bob", "carol", "dave"]
        assert users[0].display_name == "Alice A"

    def test_fewer_matches_than_limit_are_not_padded(self):
        assert len(extract_users(SEARCH_HTML, 20)) == 4

    def test_facets_from_anchor(self):
        alice = extract_users(SEARCH_HTML, 1)[0]
        assert alice.avatar_url == "https://cdn.test/alice.jpg"
        assert alice.display_name == "Alice A"
        assert alice.verified is False

    def test_noise_and_handle_text_skipped_for_name(self):
        bob = extract_users(SEARCH_HTML, 2)[1]
        assert bob.display_name == "Bobby"

    def test_facets_from_enclosing_card(self):
        users = {u.handle: u for u in extract_users(SEARCH_HTML, 10)}
        assert users["bob"].verified is True
        assert users["carol"].display_name == "Carol C"
        assert users["carol"].avatar_url == "https://cdn.test/carol.jpg"

    def test_card_does_not_leak_into_neighbour(self):
        html = """
        <div class="list">
          <div class="row"><a href="/@first"><h3>First</h3></a></div>
          <div class="row"><a href="/@second"><img src="second.jpg"></a></div>
        </div>
        """
        first, second = extract_users(html, 5)
        assert first.avatar_url == ""
        assert second.avatar_url == "second.jpg"

    def test_name_from_obfuscated_class_as_last_resort(self):
        html = """
        <div class="card">
          <a href="/@eve"><img src="eve.jpg"></a>
          <div class="css-1x2y"><span class="css-abc">Eve E</span></div>
        </div>
        """
        assert extract_users(html, 5)[0].display_name == "Eve E"

    def test_unique_id_used_only_when_it_differs_from_handle(self):
        html = """
        <a href="/@frank"><p data-e2e="search-user-unique-id">frank</p><h3>Frank F</h3></a>
        """
        assert extract_users(html, 5)[0].display_name == "Frank F"

    def test_missing_name_defaults_to_handle(self):
        users = extract_users('<a href="/@quiet"></a>', 5)
        assert users[0].display_name == "quiet"
        assert users[0].avatar_url == ""

    def test_empty_document(self):
        assert extract_users("", 5) == []
        assert extract_users("<p>No results found</p>", 5) == []

    def test_deterministic(self):
        assert extract_users(SEARCH_HTML, 10) == extract_users(SEARCH_HTML, 10)

    def test_accepts_parsed_document(self):
        soup = parse_document(SEARCH_HTML)
        assert handles(extract_users(soup, 2)) == ["alice", "bob"]

    @pytest.mark.parametrize("limit", [0, -1, True, "5", 2.5])
    def test_invalid_limit_rejected(self, limit):
        with pytest.raises(InvalidArgument):
            extract_users(SEARCH_HTML, limit)


class TestHelpers:
    def test_clamp_limit_caps_at_max(self):
        assert clamp_limit(50) == 20
        assert clamp_limit(20) == 20
        assert clamp_limit(1) == 1

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.tiktok.com/@alice", "alice"),
            ("/@alice/video/123", "alice"),
            ("/@caf%C3%A9?lang=en", "café"),
            ("/search/user?q=x", None),
            ("", None),
            (None, None),
        ],
    )
    def test_handle_from_url(self, url, expected):
        assert handle_from_url(url) == expected

    def test_first_success_skips_failing_strategy(self):
        def broken(node):
            raise RuntimeError("bad strategy")

        soup = parse_document("<h1>Title</h1>")
        assert first_success(soup, [broken, text_of("h1")]) == "Title"

    def test_first_success_respects_accept(self):
        soup = parse_document("<p>skip</p><p>keep</p>")
        assert first_success(soup, [text_of("p")], accept=lambda v: v != "skip") == "keep"

    def test_first_success_defaults_to_empty(self):
        assert first_success(parse_document("<p></p>"), [text_of("h1"), text_of("p")]) == ""

import pytest

from factories import comment
from vitals.utils.text_analysis import (
    content_hash,
    count_me_too,
    has_maintainer_response,
    is_me_too,
    label_matches,
)


@pytest.mark.parametrize(
    "body",
    ["+1", "me too", "Same here", "bump", "Any update?", "still an issue for me",
     "\U0001F44D", ":thumbsup:", "Having the same problem", "facing the same issue on 3.2"],
)
def test_me_too_patterns(body):
    assert is_me_too(body)


@pytest.mark.parametrize(
    "body",
    [
        "",
        "+1 and here is a full stack trace with details about the failure",
        "I looked into this and the bug is in the parser",
        "This is a bump in the road",
    ],
)
def test_not_me_too(body):
    assert not is_me_too(body)


def test_count_me_too():
    comments = [comment("+1"), comment("me too"), comment("Found the cause in PR #12")]
    assert count_me_too(comments) == 2


def test_maintainer_response_by_association_or_login():
    assert has_maintainer_response([comment("ok", association="COLLABORATOR")])
    assert has_maintainer_response([comment("ok", login="lead")], ["lead"])
    assert not has_maintainer_response([comment("ok", login="rando")], ["lead"])


def test_label_matches_substring_case_insensitive():
    assert label_matches(["Severity: High"], ["severity: high"])
    assert label_matches(["type/bug"], ["bug"])
    assert not label_matches(["docs"], ["bug"])


def test_content_hash_tracks_text_changes():
    base = content_hash("Title", "Body", [comment("a")])
    assert base == content_hash("Title", "Body", [comment("a", login="other")])
    assert base != content_hash("Title", "Body", [comment("b")])
    assert base != content_hash("Title", "Body!", [comment("a")])
    # field boundaries matter
    assert content_hash("ab", "c", []) != content_hash("a", "bc", [])

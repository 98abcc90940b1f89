"""Tests for the VIRT name validator."""

import pytest

from virt.naming.validator import (
    has_reserved_tag,
    is_acceptable_name,
    is_acceptable_target,
    is_secure_web_url,
    is_system_name,
    is_valid_label,
    normalize_address,
    sanitize_label,
    split_name,
)


def test_system_names():
    assert is_system_name("virt://lookin.at")
    assert is_system_name("virt://register.at")
    assert is_system_name("virt://v12browser.vc")
    assert is_system_name("virt://lookin.at/style.css")
    assert not is_system_name("virt://lookout.at")
    assert not is_system_name("lookin.at")


def test_acceptable_names():
    assert is_acceptable_name("virt://lookin.at")
    assert is_acceptable_name("virt://abc.vc")
    assert is_acceptable_name("virt://my-site.lit/docs/index.html")
    assert not is_acceptable_name("virt://abc.com")
    assert not is_acceptable_name("https://example.com")


def test_edge_cases_are_rejected():
    for name in ("", "virt://", "virt://.", "virt://abc.", "virt://.vc", "abc.vc"):
        assert not is_acceptable_name(name), name
    assert not is_acceptable_name(None)


def test_reserved_tag_needs_label():
    assert has_reserved_tag("virt://abc.vmc")
    assert not has_reserved_tag("virt://vmc")
    assert not has_reserved_tag("virt://.vmc")


def test_plain_web_url():
    assert is_secure_web_url("https://example.com")
    assert not is_secure_web_url("http://example.com")
    assert not is_secure_web_url("https://")


def test_targets():
    assert is_acceptable_target("https://github.com/u/r")
    assert is_acceptable_target("192.168.1.10")
    assert is_acceptable_target("10.0.0.1:8080")
    assert not is_acceptable_target("http://example.com")
    assert not is_acceptable_target("ftp://example.com")
    assert not is_acceptable_target("10.0.0.1:")
    assert not is_acceptable_target("")


def test_labels():
    assert is_valid_label("abc")
    assert is_valid_label("my-app-2")
    assert is_valid_label("a" * 63)
    assert not is_valid_label("ab")
    assert not is_valid_label("a" * 64)
    assert not is_valid_label("MyApp")
    assert not is_valid_label("my_app")


def test_split_name():
    assert split_name("virt://myapp.vc") == ("myapp", "vc", "")
    assert split_name("virt://MyApp.vc/a/b.html") == ("myapp", "vc", "/a/b.html")
    with pytest.raises(ValueError):
        split_name("virt://myapp.com")


def test_sanitize_label():
    assert sanitize_label("My Site!") == "mysite"
    assert sanitize_label("ok-label-9") == "ok-label-9"


def test_normalize_address():
    assert normalize_address("  virt://abc.vc ") == "virt://abc.vc"
    assert normalize_address("https://example.com/x") == "https://example.com/x"
    assert normalize_address("example.com") == "https://example.com"
    assert normalize_address("youtube") == "https://youtube.com"


def test_normalize_address_rejects_garbage():
    with pytest.raises(ValueError):
        normalize_address("   ")
    with pytest.raises(ValueError):
        normalize_address("not a url")
    with pytest.raises(ValueError):
        normalize_address("ftp://example.com")

from presswire.blocklist import host_matches, is_blocked_source_url, is_blocked_title


def test_host_matches_exact_and_parent_domain():
    assert host_matches("bad.example", "bad.example")
    assert host_matches("bad.example", "news.bad.example")
    assert host_matches(".bad.example", "www.bad.example")
    assert not host_matches("bad.example", "notbad.example")
    assert not host_matches("", "bad.example")


def test_is_blocked_source_url():
    decision = is_blocked_source_url("https://News.Bad.example/a/b", ["bad.example"])
    assert decision.blocked
    assert decision.reason == "Blocked host: bad.example"

    assert not is_blocked_source_url("https://good.example/a", ["bad.example"]).blocked
    assert not is_blocked_source_url("not a url", ["bad.example"]).blocked
    assert not is_blocked_source_url("https://bad.example/a", []).blocked


def test_is_blocked_title_folds_diacritics_case_and_quotes():
    decision = is_blocked_title("ȘTIRE: „Horoscopul” zilei", ["horoscop"])
    assert decision.blocked
    assert decision.reason == "Blocked title match: horoscop"

    assert is_blocked_title("Meci   Decisiv  în Liga 1", ["meci decisiv in liga"]).blocked
    assert is_blocked_title("Ce a spus \"Ministrul\"", ["ce a spus ministrul"]).blocked
    assert not is_blocked_title("Buget aprobat", ["horoscop"]).blocked
    assert not is_blocked_title("", ["horoscop"]).blocked
    assert not is_blocked_title("Buget aprobat", ["", "  "]).blocked

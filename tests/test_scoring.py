from sniffr.agent.scoring import (
    REGION_POINTS,
    rank_candidates,
    score_candidate,
    search_locally,
)
from sniffr.models import Candidate, ScoredCandidate


def make_candidate(text, href=None, region="body", type="link"):
    return Candidate(type=type, text=text, href=href, region=region)


def test_login_link_in_nav_scores_every_rule():
    cand = make_candidate("Login", href="https://school.edu/login", region="nav")
    # exact 22 + substring 14 + word exact 7 + word in href 3 + query in href 7
    # + keyword "login" 2 + query keyword 3 + nav 11 + concise label 5
    assert score_candidate(cand, "login") == 74


def test_query_is_case_and_whitespace_insensitive():
    cand = make_candidate("Login", href="/login", region="nav")
    assert score_candidate(cand, "  LOGIN ") == score_candidate(cand, "login")


def test_exact_match_scores_at_least_36_and_beats_partial_matches():
    exact = make_candidate("Contact", region="body")
    partial = make_candidate("Contact our admissions office", region="body")
    query = "contact"

    exact_score = score_candidate(exact, query)
    assert exact_score >= 36
    assert exact_score > score_candidate(partial, query)


def test_region_bonus_is_monotonic_with_fixed_deltas():
    scores = {
        region: score_candidate(make_candidate("Course catalog", href="/catalog", region=region), "catalog")
        for region in ["nav", "header", "upper", "body", "footer"]
    }

    assert scores["nav"] > scores["header"] > scores["upper"] > scores["body"] > scores["footer"]
    assert scores["nav"] - scores["body"] == 11
    assert scores["header"] - scores["body"] == 6
    assert scores["upper"] - scores["body"] == 4
    assert scores["footer"] - scores["body"] == -5
    assert REGION_POINTS["body"] == 0


def test_scoring_is_pure():
    cand = make_candidate("Student Portal", href="/portal", region="header")
    first = score_candidate(cand, "portal")
    second = score_candidate(cand, "portal")
    assert first == second


def test_portal_keyword_counts_twice():
    cand = make_candidate("Portal")
    # exact 22 + substring 14 + word exact 7 + (2 + 3) for each "portal" entry + concise 5
    assert score_candidate(cand, "portal") == 58


def test_keyword_bonus_needs_query_alignment_for_extra_points():
    cand = make_candidate("Help desk")
    # "help" keyword (+2) and concise label (+5); query shares no keyword
    assert score_candidate(cand, "desk") == 5 + 2 + 14 + 5
    # the query holds "help", so the keyword also earns +3
    assert score_candidate(cand, "help") == 14 + 5 + 2 + 3 + 5


def test_heading_bonus():
    link = make_candidate("Financial aid", type="link")
    heading = make_candidate("Financial aid", type="heading")
    assert score_candidate(heading, "aid") - score_candidate(link, "aid") == 3


def test_label_length_shaping_and_filler_penalty():
    long_text = "An unusually long label that keeps going well past seventy characters in total"
    assert len(long_text) > 70
    assert score_candidate(make_candidate(long_text), "zzz") == -3
    assert score_candidate(make_candidate("x" * 50), "zzz") == 0
    assert score_candidate(make_candidate("Click here"), "zzz") == 5 - 2
    assert score_candidate(make_candidate("Read More about us"), "zzz") == 5 - 2


def test_blank_query_scores_zero():
    assert score_candidate(make_candidate("Login", region="nav"), "   ") == 0


def test_billing_example_finds_only_the_nav_link():
    pay = make_candidate("Pay My Bill", href="/billing", region="nav")
    about = make_candidate("About Us", href="/about", region="footer")

    assert score_candidate(pay, "billing") >= 18
    assert score_candidate(about, "billing") <= 0

    results = rank_candidates([pay, about], "billing")
    assert [r.candidate for r in results] == [pay]


def test_rank_candidates_thresholds_and_caps():
    weak = make_candidate("Click here")  # scores 3, positive but below the threshold
    strong = [make_candidate(f"Apply now {i}", href=f"/apply/{i}", region="nav") for i in range(7)]

    results = rank_candidates([weak] + strong, "apply")

    assert len(results) == 5
    assert all(r.score >= 8 for r in results)
    assert weak not in [r.candidate for r in results]


def test_rank_candidates_keeps_extraction_order_on_ties():
    first = make_candidate("Tuition", href="/a", region="upper")
    second = make_candidate("Tuition", href="/b", region="upper")
    better = make_candidate("Tuition", href="/c", region="nav")

    results = rank_candidates([first, second, better], "tuition")

    assert [r.candidate.href for r in results] == ["/c", "/a", "/b"]


def test_rank_candidates_custom_limits():
    cands = [make_candidate("Events", href=f"/e{i}", region="body") for i in range(3)]
    assert rank_candidates(cands, "events", max_results=2) == rank_candidates(cands, "events")[:2]
    assert rank_candidates(cands, "events", min_score=1000) == []


def test_search_locally_reports_not_found():
    resp = search_locally([make_candidate("About Us", region="footer")], "billing")
    assert resp.found is False
    assert resp.results == []
    assert resp.to_payload() == {"found": False, "results": []}

    assert search_locally([make_candidate("Login")], "  ").found is False


def test_search_locally_payload_is_serializable():
    cand = make_candidate("Login", href="/login", region="nav")
    cand.element = object()
    resp = search_locally([cand], "login")

    assert resp.found is True
    payload = resp.to_payload()["results"][0]
    assert payload["text"] == "Login"
    assert payload["href"] == "/login"
    assert payload["score"] == 74
    assert payload["confidence"] == 100
    assert "element" not in payload


def test_confidence_percent_is_clamped():
    cand = make_candidate("x")
    assert ScoredCandidate(cand, 7).confidence_percent == 20
    assert ScoredCandidate(cand, 35).confidence_percent == 100
    assert ScoredCandidate(cand, 90).confidence_percent == 100
    assert ScoredCandidate(cand, -4).confidence_percent == 0

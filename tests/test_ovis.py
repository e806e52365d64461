import logging

from docengine.ovis import evaluate_ovis, evaluate_rule

DATA = {
    "client": {"name": "Jane", "email": ""},
    "hazards": [{"task": "Sanding"}],
    "notes": "",
    "abn": "51824753556",
    "includeMarkup": True,
    "days": 3.0,
    "attendees": [],
}


def test_exists_and_empty():
    assert evaluate_rule("exists(client.name)", DATA) is True
    assert evaluate_rule("exists(client.email)", DATA) is False
    assert evaluate_rule("empty(notes)", DATA) is True
    assert evaluate_rule("empty(attendees)", DATA) is True
    assert evaluate_rule("empty(missing.path)", DATA) is True
    assert evaluate_rule("empty(hazards)", DATA) is False


def test_paths_may_be_quoted():
    assert evaluate_rule("exists('client.name')", DATA) is True
    assert evaluate_rule('empty("notes")', DATA) is True


def test_len_less_than():
    assert evaluate_rule("len(hazards) < 3", DATA) is True
    assert evaluate_rule("len(hazards) < 1", DATA) is False
    # Anything without a length counts as empty.
    assert evaluate_rule("len(missing) < 1", DATA) is True


def test_len_equals_accepts_double_and_triple():
    assert evaluate_rule("len(abn) == 11", DATA) is True
    assert evaluate_rule("len(abn) === 11", DATA) is True
    assert evaluate_rule("len(abn) == 9", DATA) is False
    assert evaluate_rule("len(missing) == 0", DATA) is False


def test_equals_compares_as_text():
    assert evaluate_rule("equals(client.name, Jane)", DATA) is True
    assert evaluate_rule("equals(client.name, 'Jane')", DATA) is True
    assert evaluate_rule("equals(includeMarkup, true)", DATA) is True
    assert evaluate_rule("equals(days, 3)", DATA) is True
    assert evaluate_rule("equals(client.name, Bob)", DATA) is False


def test_unknown_rule_is_false_and_logged(caplog):
    with caplog.at_level(logging.WARNING):
        assert evaluate_rule("client.name != ''", DATA) is False
    assert "Unknown rule syntax" in caplog.text


def test_evaluate_ovis_keeps_template_order():
    template = {
        "ovisChecks": [
            {"id": "a", "severity": "high", "rule": "empty(notes)", "message": "Notes missing"},
            {"id": "b", "severity": "low", "rule": "exists(notes)", "message": "never"},
            {"id": "c", "severity": "medium", "rule": "len(hazards) < 2", "message": "Few hazards"},
        ]
    }
    warnings = evaluate_ovis(template, DATA)
    assert warnings == [
        {"id": "a", "severity": "high", "message": "Notes missing"},
        {"id": "c", "severity": "medium", "message": "Few hazards"},
    ]

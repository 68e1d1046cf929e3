from invoice_pilot.bank_classifier import DEFAULT_BANK_PATTERNS, BankClassifier


def test_sender_identifies_bank():
    classifier = BankClassifier()

    assert classifier.classify("Revolut Ltd <no-reply@revolut.com> Your statement") == "Revolut"


def test_unknown_sender_is_unclassified():
    assert BankClassifier().classify("acme corp <ap@acme.io> invoice 42") is None


def test_first_pattern_in_list_wins():
    # "wise" precedes "paypal" in the built-in order
    assert BankClassifier().classify("PayPal receipt for your Wise transfer") == "Wise"


def test_multi_word_names_are_title_cased():
    assert BankClassifier().classify("Statement from DEUTSCHE BANK AG") == "Deutsche Bank"


def test_substring_mode_matches_inside_words():
    assert BankClassifier().classify("monthly billing summary") == "Ing"


def test_word_mode_requires_word_boundaries():
    classifier = BankClassifier(match_mode="word")

    assert classifier.classify("monthly billing summary") is None
    assert classifier.classify("your ING statement") == "Ing"


def test_custom_patterns_replace_builtin_list():
    classifier = BankClassifier(["acme"])

    assert classifier.classify("Acme Corp invoice") == "Acme"
    assert classifier.classify("Revolut statement") is None


def test_builtin_list_has_no_duplicates():
    assert len(DEFAULT_BANK_PATTERNS) == len(set(DEFAULT_BANK_PATTERNS))

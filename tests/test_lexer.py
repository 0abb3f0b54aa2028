import pytest
from textwrap import dedent

from squared.sq_lexer import Lexer, tokenize
from squared.sq_errors import LexError
from squared.sq_datatypes import (
    IDENTIFIER, OBJECT_IDENTIFIER, NUMBER, BOXED_NUMBER, STRING, BOOLEAN,
    SYMBOL, NEWLINE, INDENT, DEDENT, EOF,
)


def kinds(tokens):
    return [t.kind for t in tokens]


def values(tokens):
    return [t.value for t in tokens if t.kind not in (NEWLINE, INDENT, DEDENT, EOF)]


# --- Structure Tests ---

def test_simple_block_token_stream():
    src = "x = 1\nif x\n    print(x)\n"
    assert kinds(tokenize(src)) == [
        IDENTIFIER, SYMBOL, NUMBER, NEWLINE,
        IDENTIFIER, IDENTIFIER, NEWLINE,
        INDENT, IDENTIFIER, SYMBOL, IDENTIFIER, SYMBOL, NEWLINE,
        DEDENT, EOF,
    ]


def test_indent_and_dedent_balance_with_missing_trailing_dedents():
    src = dedent("""
        function outer()
            if true
                while false
                    x = 1""")
    tokens = tokenize(src)
    assert kinds(tokens).count(INDENT) == 3
    assert kinds(tokens).count(INDENT) == kinds(tokens).count(DEDENT)
    assert tokens[-1].kind == EOF


def test_dedent_pops_several_levels_at_once():
    src = "if a\n    if b\n        x = 1\ny = 2\n"
    tokens = tokenize(src)
    y_index = next(i for i, t in enumerate(tokens) if t.value == "y")
    assert [t.kind for t in tokens[y_index - 2:y_index]] == [DEDENT, DEDENT]


def test_blank_and_comment_lines_do_not_touch_indentation():
    src = "if x\n    a = 1\n\n-- a comment at column zero\n        \n    b = 2\n"
    tokens = tokenize(src)
    assert kinds(tokens).count(INDENT) == 1
    assert kinds(tokens).count(DEDENT) == 1
    assert values(tokens) == ["if", "x", "a", "=", 1.0, "b", "=", 2.0]


def test_tab_counts_as_four_columns():
    src = "if x\n\ty = 1\n    z = 2\n"
    tokens = tokenize(src)
    indents = [t for t in tokens if t.kind == INDENT]
    assert len(indents) == 1
    assert indents[0].value == 4
    assert kinds(tokens).count(DEDENT) == 1


def test_inconsistent_dedent_is_an_error():
    src = "if x\n        a = 1\n    b = 2\n"
    with pytest.raises(LexError) as exc:
        tokenize(src)
    assert exc.value.line == 3


def test_tokenize_is_deterministic():
    src = 'var[x] = !5!\nprint("x is", x)\n'
    assert tokenize(src) == tokenize(src)


def test_lexer_caches_its_token_list():
    lexer = Lexer("a = 1")
    assert lexer.tokenize() is lexer.tokenize()


# --- Literal Tests ---

def test_bare_and_boxed_numbers():
    tokens = tokenize("a = 12 + 3.5 + !7! + !-2.5!")
    nums = [(t.kind, t.value) for t in tokens if t.kind in (NUMBER, BOXED_NUMBER)]
    assert nums == [(NUMBER, 12.0), (NUMBER, 3.5), (BOXED_NUMBER, 7.0), (BOXED_NUMBER, -2.5)]


def test_strings_have_no_escape_processing():
    tokens = tokenize(r'x = "a\n -- not a comment"')
    strings = [t for t in tokens if t.kind == STRING]
    assert len(strings) == 1
    assert strings[0].value == r"a\n -- not a comment"
    assert strings[0].text == r'"a\n -- not a comment"'


def test_booleans_in_both_spellings():
    tokens = tokenize("a = [True, false, true, False]")
    assert [t.value for t in tokens if t.kind == BOOLEAN] == [True, False, True, False]


def test_object_identifier():
    tokens = tokenize("Child #Base# = [ ]")
    assert tokens[0].kind == IDENTIFIER
    assert tokens[1].kind == OBJECT_IDENTIFIER
    assert tokens[1].value == "Base"
    assert tokens[1].text == "#Base#"


def test_two_character_operators_win_over_prefixes():
    tokens = tokenize("a += 1 -= 2 *= 3 /= 4 == 5 != 6 <= 7 >= 8 < 9 > 0")
    ops = [t.value for t in tokens if t.kind == SYMBOL]
    assert ops == ["+=", "-=", "*=", "/=", "==", "!=", "<=", ">=", "<", ">"]


def test_trailing_comment_is_discarded():
    tokens = tokenize("x = 1 -- set x\n")
    assert values(tokens) == ["x", "=", 1.0]


def test_hash_comment_dialect_keeps_object_identifiers():
    src = "# header comment\n#Point# = [ ]  # trailing\n"
    tokens = tokenize(src, comment_prefix="#")
    assert [t.kind for t in tokens[:4]] == [OBJECT_IDENTIFIER, SYMBOL, SYMBOL, SYMBOL]
    assert values(tokens) == ["Point", "=", "[", "]"]


def test_token_positions_are_one_based():
    tokens = tokenize("a = 1\n  \nprint(a)")
    print_tok = next(t for t in tokens if t.value == "print")
    assert (print_tok.line, print_tok.col) == (3, 1)
    a_tok = [t for t in tokens if t.value == "a"][1]
    assert (a_tok.line, a_tok.col) == (3, 7)


# --- Error Tests ---

def test_unterminated_string():
    with pytest.raises(LexError) as exc:
        tokenize('x = "abc')
    assert "Unterminated string" in exc.value.message
    assert (exc.value.line, exc.value.col) == (1, 5)


def test_unterminated_object_identifier():
    with pytest.raises(LexError) as exc:
        tokenize("\n#Point = [ ]")
    assert "Unterminated object identifier" in exc.value.message
    assert exc.value.line == 2


def test_unexpected_character():
    with pytest.raises(LexError) as exc:
        tokenize("x = 1 @ 2")
    assert "'@'" in exc.value.message
    assert exc.value.col == 7

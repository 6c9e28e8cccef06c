from __future__ import annotations

import logging

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from einsum_tree import ClassificationError, DimensionTypes, classify, try_classify
from einsum_tree.core.classifier import Acceptance


def _flat(dims: DimensionTypes):
    return {**dims.primitive, **dims.loop}


def _expect(dims: DimensionTypes, **expected):
    flat = _flat(dims)
    for key, labels in flat.items():
        assert labels == expected.get(key, []), f"{key}: {labels} != {expected.get(key, [])}"


def test_acceptance_pointer_only_moves_forward():
    assert Acceptance.CB.successor() is Acceptance.MB
    assert Acceptance.MB.successor() is Acceptance.KB
    assert Acceptance.KB.successor() is Acceptance.NB
    assert Acceptance.NB.successor() is Acceptance.LOOP
    assert Acceptance.LOOP.successor() is Acceptance.LOOP


def test_matrix_product_regression_case():
    dims = classify(["i", "j"], ["i", "k"], ["k", "j"])
    _expect(dims, bm=["i"], nb=["j"], bk=["k"])


def test_gemm_layout_is_fully_primitive():
    dims = classify(["n", "m"], ["k", "m"], ["n", "k"])
    _expect(dims, mb=["m"], nb=["n"], kb=["k"])


def test_batch_dimensions_shared_by_all_tensors():
    dims = classify(["i", "j", "k"], ["i", "j", "k"], ["i", "j", "k"])
    assert set(dims.dims("c")) == {"i", "j", "k"}
    assert dims.dims("m") == dims.dims("n") == dims.dims("k") == []


def test_left_only_dimensions_become_loop_m():
    dims = classify(["i", "j", "k", "l", "m"], ["i", "j", "k"], ["l", "m"])
    assert dims.loop["bm"] == ["i", "j", "k"]
    assert dims.primitive["nb"] == ["l", "m"]


def test_right_only_dimensions_become_loop_n():
    dims = classify(["i", "j", "k", "l", "m"], ["k", "l"], ["i", "j", "m"])
    assert dims.loop["bn"] == ["i", "j"]
    assert dims.loop["bm"] == ["k", "l"]
    assert dims.primitive["nb"] == ["m"]


def test_contracted_dimension_after_batch_dimensions():
    dims = classify(["k", "m"], ["k", "m", "n"], ["k", "m", "n"])
    assert dims.primitive["kb"] == ["n"]
    assert dims.loop["bc"] == ["k", "m"]


def test_empty_operands_give_empty_result():
    dims = classify([], [], [])
    assert dims.is_empty()


def test_mixed_contraction_pattern():
    dims = classify(["m", "n", "o"], ["m", "k", "l"], ["k", "l", "n", "o"])
    _expect(dims, bm=["m"], nb=["n", "o"], bk=["k", "l"])


@pytest.mark.parametrize(
    "node,left,right,expected",
    [
        (
            ["0", "1", "2", "3"],
            ["9", "5", "6", "0", "2", "3"],
            ["1", "5", "6", "9"],
            {"mb": ["2", "3"], "nb": ["1"], "kb": ["9"], "bm": ["0"], "bk": ["5", "6"]},
        ),
        (
            ["5", "1", "2", "7"],
            ["6", "2", "7"],
            ["5", "1", "6"],
            {"mb": ["2", "7"], "nb": ["5", "1"], "kb": ["6"]},
        ),
        (
            ["7", "6", "5", "4", "8"],
            ["6", "0", "2", "4", "8"],
            ["7", "5", "2", "0"],
            {
                "mb": ["4", "8"],
                "nb": ["5"],
                "kb": ["0"],
                "bm": ["6"],
                "bn": ["7"],
                "bk": ["2"],
            },
        ),
        (
            ["0", "1", "2", "3"],
            ["4", "2", "5", "3"],
            ["0", "1", "4", "5"],
            {"mb": ["3"], "nb": ["0", "1"], "kb": ["5"], "bm": ["2"], "bk": ["4"]},
        ),
        (
            ["0", "1", "2", "3"],
            ["4", "5", "2", "3"],
            ["1", "5", "4", "0"],
            {"mb": ["2", "3"], "nb": ["0"], "bn": ["1"], "bk": ["4", "5"]},
        ),
    ],
)
def test_numeric_label_patterns(node, left, right, expected):
    _expect(classify(node, left, right), **expected)


def test_dims_lists_primitive_before_loop():
    dims = classify(["0", "1", "2", "3"], ["9", "5", "6", "0", "2", "3"], ["1", "5", "6", "9"])
    assert dims.dims("k") == ["9", "5", "6"]
    assert dims.dims("M") == ["2", "3", "0"]
    assert dims.kind_of("9") == "k"
    assert dims.kind_of("x") is None


def test_label_in_one_operand_only_is_invalid_k():
    with pytest.raises(ClassificationError, match="invalid K dimension") as excinfo:
        classify(["i"], ["i", "k"], ["j"])
    assert excinfo.value.node == ["i"]
    assert "([i,k],[j]->[i])" in str(excinfo.value)


def test_output_label_missing_from_operands_is_malformed():
    with pytest.raises(ClassificationError, match="malformed"):
        classify(["i", "z"], ["i", "k"], ["k"])


def test_repeated_output_label_is_rejected():
    with pytest.raises(ClassificationError):
        classify(["i", "i"], ["i", "k"], ["k", "i"])


def test_empty_label_is_rejected():
    with pytest.raises(ClassificationError, match="undefined or empty"):
        classify([""], [""], ["k"])


def test_try_classify_logs_and_returns_none(caplog):
    with caplog.at_level(logging.WARNING, logger="einsum_tree.core.classifier"):
        assert try_classify(["i"], ["i", "k"], ["j"]) is None
    assert "invalid K dimension" in caplog.text


def test_to_dict_shape():
    data = classify(["i", "j"], ["i", "k"], ["k", "j"]).to_dict()
    assert set(data) == {"primitive", "loop"}
    assert set(data["primitive"]) == {"cb", "mb", "nb", "kb"}
    assert set(data["loop"]) == {"bc", "bm", "bn", "bk"}


@st.composite
def _contractions(draw):
    labels = [f"x{i}" for i in range(8)]
    pool = draw(st.permutations(labels))
    n_c, n_m, n_n, n_k = (draw(st.integers(0, 2)) for _ in range(4))
    cursor = 0

    def take(count):
        nonlocal cursor
        chunk = pool[cursor:cursor + count]
        cursor += count
        return list(chunk)

    c, m, n, k = take(n_c), take(n_m), take(n_n), take(n_k)
    node = draw(st.permutations(c + m + n))
    left = draw(st.permutations(c + m + k))
    right = draw(st.permutations(c + n + k))
    return list(node), list(left), list(right), (c, m, n, k)


@settings(max_examples=150, deadline=None)
@given(_contractions())
def test_valid_contractions_classify_every_label_once(case):
    node, left, right, (c, m, n, k) = case
    dims = classify(node, left, right)
    assert sorted(dims.labels()) == sorted(c + m + n + k)
    for kind, labels in zip("cmnk", (c, m, n, k)):
        assert sorted(dims.dims(kind)) == sorted(labels)

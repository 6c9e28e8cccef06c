from __future__ import annotations

import pytest

from einsum_tree import (
    ContractionTree,
    MetricsConfig,
    calculate_byte_accesses,
    calculate_operations,
    classify,
    compute_metrics,
    compute_strides,
)

MATMUL = "[m,k],[k,n]->[m,n]"
CHAIN = "[[i,k],[k,j]->[i,j]],[j,l]->[i,l]"


def _tree(expression, sizes):
    tree = ContractionTree(expression)
    tree.update_index_sizes(sizes)
    return tree


def test_matmul_operation_count_and_byte_accesses():
    sizes = {"m": 2, "n": 3, "k": 4}
    dims = classify(["m", "n"], ["m", "k"], ["k", "n"])
    assert calculate_operations(dims, sizes) == 42
    assert calculate_byte_accesses(dims, sizes) == 2 * 3 + 3 * 4 + 2 * 4


def test_gemm_layout_has_same_operation_count():
    sizes = {"m": 2, "n": 3, "k": 4}
    dims = classify(["n", "m"], ["k", "m"], ["n", "k"])
    assert dims.primitive["mb"] == ["m"]
    assert calculate_operations(dims, sizes) == 42


def test_compute_metrics_annotates_matmul_tree():
    tree = _tree(MATMUL, {"m": 2, "n": 3, "k": 4})
    result = compute_metrics(tree.index_sizes, tree)
    root = tree.get_root()

    assert result.ok
    assert result.total_operations == 42
    assert result.contraction_nodes == [root]
    assert root.metrics.operations == 42
    assert root.metrics.total_operations == 42
    assert root.metrics.byte_accesses == 26
    assert root.metrics.arithmetic_intensity == pytest.approx(42 / (26 * 4))
    assert root.metrics.operations_percentage == pytest.approx(100.0)
    assert root.metrics.normalized_operations_percentage == 0.0
    assert root.left.metrics.total_operations is None
    assert root.left.metrics.operations is None


def test_tensor_sizes_and_percentages():
    tree = _tree(MATMUL, {"m": 2, "n": 3, "k": 4})
    compute_metrics(tree.index_sizes, tree)
    root = tree.get_root()

    assert root.left.metrics.tensor_size == 32
    assert root.right.metrics.tensor_size == 48
    assert root.metrics.tensor_size == 24
    total = 32 + 48 + 24
    assert root.left.metrics.size_percentage == pytest.approx(32 / total * 100)
    assert root.right.metrics.normalized_size_percentage == pytest.approx(100.0)
    assert root.metrics.normalized_size_percentage == pytest.approx(0.0)
    assert root.left.metrics.normalized_size_percentage == pytest.approx(100 / 3)


def test_element_bytes_scale_tensor_sizes():
    tree = _tree(MATMUL, {"m": 2, "n": 3, "k": 4})
    compute_metrics(tree.index_sizes, tree, element_bytes=8)
    root = tree.get_root()
    assert root.metrics.tensor_size == 48
    assert root.metrics.arithmetic_intensity == pytest.approx(42 / (26 * 8))


def test_equal_sizes_normalise_to_zero():
    tree = ContractionTree("[i,j]->[j,i]")
    compute_metrics({}, tree)
    for node in tree.iter_nodes():
        assert node.metrics.tensor_size == 16
        assert node.metrics.size_percentage == pytest.approx(50.0)
        assert node.metrics.normalized_size_percentage == 0.0


def test_operation_percentages_across_contractions():
    tree = _tree(CHAIN, {"i": 2, "j": 3, "k": 4, "l": 5})
    result = compute_metrics(tree.index_sizes, tree)
    root = tree.get_root()
    inner = root.left

    assert inner.metrics.operations == 42
    assert root.metrics.operations == 50
    assert result.total_operations == 92
    assert result.contraction_nodes == [inner, root]
    assert inner.metrics.operations_percentage == pytest.approx(42 / 92 * 100)
    assert root.metrics.operations_percentage == pytest.approx(50 / 92 * 100)
    assert inner.metrics.normalized_operations_percentage == pytest.approx(0.0)
    assert root.metrics.normalized_operations_percentage == pytest.approx(100.0)
    assert inner.metrics.total_operations is None


def test_missing_sizes_default_to_two():
    tree = ContractionTree(CHAIN)
    result = compute_metrics({}, tree)
    assert result.total_operations == 24


def test_classification_failure_marks_tree_faulty():
    tree = ContractionTree("[i,k],[j]->[i]")
    result = compute_metrics({}, tree)
    root = tree.get_root()

    assert not result.ok
    assert result.total_operations == 0
    assert result.faulty_nodes == [root]
    assert root.metrics.operations is None
    assert root.metrics.total_operations is None
    assert root.metrics.tensor_size == 8


def test_faulty_run_clears_previous_operation_metrics():
    tree = _tree(CHAIN, {"i": 2})
    compute_metrics(tree.index_sizes, tree)
    assert tree.get_root().left.metrics.operations is not None

    root = tree.get_root()
    root.right.value = ["q"]
    result = compute_metrics(tree.index_sizes, tree)
    assert result.faulty_nodes == [root]
    assert all(node.metrics.operations is None for node in tree.iter_nodes())
    assert all(node.metrics.operations_percentage is None for node in tree.iter_nodes())


def test_compute_metrics_accepts_root_node_and_none():
    tree = ContractionTree(MATMUL)
    assert compute_metrics({}, tree.get_root()).total_operations == 12
    empty = compute_metrics({}, None)
    assert empty.total_operations == 0
    assert empty.faulty_nodes == []


def test_compute_strides_is_row_major():
    assert compute_strides(["i", "j", "k"], {"i": 2, "j": 3, "k": 4}) == [12, 4, 1]
    assert compute_strides(["i", "j"], {}) == [2, 1]
    assert compute_strides([], {}) == []


def test_metrics_config_normalisation():
    cfg = MetricsConfig(element_bytes="8", size_unit="mib").normalized()
    assert cfg.element_bytes == 8
    assert cfg.size_unit == "MiB"
    with pytest.raises(ValueError, match="element_bytes must be positive"):
        MetricsConfig(element_bytes=0).normalized()
    with pytest.raises(ValueError, match="Unsupported size unit"):
        MetricsConfig(size_unit="GiB").normalized()


def test_default_index_size_from_config():
    tree = ContractionTree(MATMUL)
    result = compute_metrics({}, tree, config=MetricsConfig(default_index_size=3))
    assert result.total_operations == 2 * 9 * 3 - 9


def test_zero_sized_labels_leave_intensity_undefined():
    tree = ContractionTree(MATMUL)
    result = compute_metrics({"m": 0, "n": 0, "k": 4}, tree)
    root = tree.get_root()
    assert result.ok
    assert root.metrics.byte_accesses == 0
    assert root.metrics.arithmetic_intensity is None
    assert root.metrics.operations_percentage == 0.0
    assert root.metrics.size_percentage == 0.0

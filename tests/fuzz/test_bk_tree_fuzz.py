from hypothesis import given, settings, strategies as st

from core.algorithms.bk_tree import BKTree, hamming_distance, to_unsigned64

hashes = st.integers(min_value=-(2 ** 63), max_value=2 ** 63 - 1)


@given(hashes, hashes)
def test_hamming_symmetric_and_bounded(a, b):
    d = hamming_distance(a, b)
    assert d == hamming_distance(b, a)
    assert 0 <= d <= 64
    assert (d == 0) == (to_unsigned64(a) == to_unsigned64(b))


@given(hashes, hashes, hashes)
def test_hamming_triangle_inequality(a, b, c):
    assert hamming_distance(a, c) <= hamming_distance(a, b) + hamming_distance(b, c)


@settings(max_examples=50)
@given(
    st.lists(hashes, min_size=0, max_size=60),
    hashes,
    st.integers(min_value=0, max_value=12),
)
def test_find_matches_brute_force(values, query, radius):
    tree = BKTree()
    for i, value in enumerate(values):
        tree.add(value, i)

    found = list(tree.find(query, radius))
    expected = sorted(
        i for i, value in enumerate(values) if hamming_distance(value, query) <= radius
    )
    assert sorted(item for _, _, item in found) == expected
    distances = [d for _, d, _ in found]
    assert distances == sorted(distances)


@settings(max_examples=50)
@given(st.lists(hashes, min_size=1, max_size=40), st.data())
def test_exact_after_remove(values, data):
    tree = BKTree()
    for i, value in enumerate(values):
        tree.add(value, i)

    target = data.draw(st.sampled_from(values))
    removed = tree.remove(target, 0, lambda item: True)

    assert sorted(removed) == [i for i, v in enumerate(values) if to_unsigned64(v) == to_unsigned64(target)]
    assert tree.exact(target) == []
    assert len(tree) == len(values) - len(removed)

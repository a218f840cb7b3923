import pytest

from core.chunker import DAGNode, SimpleDAGExecutor, SlabChunker


def test_slabs_cover_every_cube_layer_once():
    chunker = SlabChunker(depth=10, slab_depth=4, halo=1)
    slabs = list(chunker)

    assert len(chunker) == 3
    assert [(s.core.start, s.core.stop) for s in slabs] == [(0, 4), (4, 8), (8, 9)]
    assert [s.slab_id for s in slabs] == [0, 1, 2]
    assert [s.is_last for s in slabs] == [False, False, True]


def test_halo_is_clamped_to_volume():
    slabs = list(SlabChunker(depth=10, slab_depth=4, halo=1))
    assert (slabs[0].extended.start, slabs[0].extended.stop) == (0, 6)
    assert (slabs[1].extended.start, slabs[1].extended.stop) == (3, 10)
    assert (slabs[2].extended.start, slabs[2].extended.stop) == (7, 10)
    assert slabs[1].core_in_extended == slice(1, 6)


def test_single_slab_when_depth_is_small():
    slabs = list(SlabChunker(depth=2, slab_depth=32))
    assert len(slabs) == 1
    assert slabs[0].layer_count == 1
    assert slabs[0].is_last


@pytest.mark.parametrize("kwargs", [{"depth": 1}, {"depth": 5, "slab_depth": 0}, {"depth": 5, "halo": -1}])
def test_invalid_arguments(kwargs):
    with pytest.raises(ValueError):
        SlabChunker(**kwargs)


def test_dag_runs_in_dependency_order():
    calls = []
    dag = SimpleDAGExecutor()
    dag.add(DAGNode("extract", lambda deps: calls.append("extract") or deps["build"] * 2, depends_on=("build",)))
    dag.add(DAGNode("build", lambda deps: calls.append("build") or deps["load"] + 1, depends_on=("load",)))
    dag.add(DAGNode("load", lambda deps: calls.append("load") or 1))

    progress = []
    results = dag.run(lambda p, m: progress.append((p, m)))
    assert calls == ["load", "build", "extract"]
    assert results == {"load": 1, "build": 2, "extract": 4}
    assert progress[-1] == (100, "Pipeline complete")


def test_dag_rejects_cycles_and_unknown_nodes():
    dag = SimpleDAGExecutor()
    dag.add(DAGNode("a", lambda deps: 1, depends_on=("b",)))
    dag.add(DAGNode("b", lambda deps: 2, depends_on=("a",)))
    with pytest.raises(ValueError):
        dag.run()

    dangling = SimpleDAGExecutor().add(DAGNode("a", lambda deps: 1, depends_on=("missing",)))
    with pytest.raises(KeyError):
        dangling.run()

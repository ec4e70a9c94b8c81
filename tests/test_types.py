from distill.types import (
    BrokerResult,
    Chunk,
    Cluster,
    ClusterResult,
    DeduplicationResult,
    IngestionStats,
    Vector,
    VectorBatch,
)


def test_chunk_defaults_unclustered():
    chunk = Chunk(id="a", text="hello")
    assert chunk.cluster_id == -1
    assert chunk.metadata == {}
    assert chunk.embedding == []


def test_chunk_dimension_matches_embedding():
    embedding = [0.1, 0.2, 0.3, 0.4]
    chunk = Chunk(id="a", embedding=embedding)
    assert chunk.dimension() == len(embedding)


def test_chunk_clone_is_equal_but_independent():
    original = Chunk(id="a", text="t", embedding=[1.0, 2.0], score=0.5,
                     metadata={"k": "v"}, cluster_id=3)
    copy = original.clone()
    assert copy == original
    copy.embedding[0] = 9.0
    copy.metadata["k"] = "changed"
    assert original.embedding[0] == 1.0
    assert original.metadata["k"] == "v"


def test_cluster_size_counts_members():
    members = [Chunk(id="a"), Chunk(id="b"), Chunk(id="c")]
    cluster = Cluster(id=1, members=members)
    assert cluster.size() == len(members)


def test_cluster_result_reduction_percent():
    result = ClusterResult(input_count=10, representatives=[Chunk(id=str(i)) for i in range(5)])
    assert result.reduction_percent() == 50.0


def test_cluster_result_reduction_zero_input():
    assert ClusterResult().reduction_percent() == 0.0


def test_cluster_result_no_reduction_when_all_kept():
    reps = [Chunk(id="a"), Chunk(id="b")]
    assert ClusterResult(input_count=2, representatives=reps).reduction_percent() == 0.0


def test_vector_clone_is_independent():
    vector = Vector(id="v", values=[1.0, 2.0, 3.0], metadata={"src": "x"})
    copy = vector.clone()
    assert copy == vector
    assert copy.dimension() == vector.dimension()
    copy.values.append(4.0)
    copy.metadata["src"] = "y"
    assert vector.values == [1.0, 2.0, 3.0]
    assert vector.metadata == {"src": "x"}


def test_vector_batch_holds_vectors():
    vectors = [Vector(id="a"), Vector(id="b")]
    batch = VectorBatch(vectors=vectors)
    assert [v.id for v in batch.vectors] == ["a", "b"]


def test_deduplication_savings_zero_when_nothing_processed():
    assert DeduplicationResult().savings_percent() == 0.0


def test_deduplication_savings_all_duplicates():
    result = DeduplicationResult(duplicate_count=7, total_processed=7)
    assert result.savings_percent() == 100.0


def test_ingestion_success_rate():
    assert IngestionStats().success_rate() == 0.0
    full = IngestionStats(total_vectors=8, uploaded_vectors=8)
    half = IngestionStats(total_vectors=8, uploaded_vectors=4)
    assert half.success_rate() * 2 == full.success_rate()


def test_broker_result_default_stats_empty():
    result = BrokerResult()
    assert result.chunks == []
    assert result.stats.returned == 0
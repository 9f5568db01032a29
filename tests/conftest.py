import os
import tempfile

os.environ.setdefault("LOG_FILE_PATH", os.path.join(tempfile.gettempdir(), "review-pipeline-tests", "pipeline.log"))

import pytest

from src.processing.config import PipelineConfig
from src.processing.models.review_kinds import COURSE, COMPANY
from src.processing.pipeline.embedding_runner import EmbeddingRunner
from src.processing.pipeline.rollup_runner import RollupRunner
from tests.fakes import (
    TickingClock, InMemoryDataset, FakeJobStore, FakeRollupStore, FakeEmbeddings, FakeSummarizer
)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def config():
    return PipelineConfig(runner="test-runner")


@pytest.fixture
def course_data(clock):
    return InMemoryDataset(COURSE, clock)


@pytest.fixture
def company_data(clock):
    return InMemoryDataset(COMPANY, clock)


@pytest.fixture
def job_store(course_data):
    return FakeJobStore(course_data)


@pytest.fixture
def rollup_store(course_data):
    return FakeRollupStore(course_data)


@pytest.fixture
def embeddings():
    return FakeEmbeddings()


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def embedding_runner(job_store, embeddings, config, clock):
    return EmbeddingRunner(job_store, embeddings, config, clock=clock)


@pytest.fixture
def rollup_runner(rollup_store, summarizer, embeddings, config, clock):
    return RollupRunner(rollup_store, summarizer, embeddings, config, clock=clock)

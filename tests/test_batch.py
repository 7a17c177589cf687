import threading

import pytest

from peakanalyzer.batch import BatchQueue, TaskStatus
from peakanalyzer.core.context import ProcessingContext
from peakanalyzer.core.errors import ConfigValidationError
from peakanalyzer.loaders import TableLoader

CONFIGURATION = {
    'curve_type': 'tic',
    'filter': {'ms_level': 1},
    'baseline': {'method': 'linear'},
}


@pytest.fixture
def context():
    with ProcessingContext({'max_workers': 1}) as ctx:
        yield ctx


def test_failed_file_does_not_stop_batch(context, table_file, tmp_path):
    queue = BatchQueue(context, TableLoader(), CONFIGURATION)
    good = queue.add_task(str(table_file))
    bad = queue.add_task(str(tmp_path / "missing.tsv"))
    queue.add_task(str(table_file))

    summary = queue.run()

    assert summary == {'pending': 0, 'processing': 0, 'completed': 2, 'failed': 1, 'cancelled': 0}
    assert good.status == TaskStatus.COMPLETED
    assert bad.status == TaskStatus.FAILED
    assert "missing.tsv" in bad.error
    assert queue.failed == [bad]


def test_completed_task_holds_processed_container(context, table_file):
    queue = BatchQueue(context, TableLoader(), CONFIGURATION)
    task = queue.add_task(str(table_file))
    queue.run()

    result = task.result
    curve_types = [c.curve_type for c in result.curves]
    assert curve_types[:3] == ['tic', 'baseline', 'corrected']
    assert len(result.peaks) == 1
    assert task.summary()['peaks_count'] == 1
    assert task.processing_time_ms > 0


def test_strategy_configuration(context, table_file):
    queue = BatchQueue(context, None, {
        'filter': {'ms_level': 1},
        'strategy': {'mode': 'predefined', 'strategy_name': 'simple_peaks'},
    })
    task = queue.add_task(str(table_file))
    queue.run()
    assert task.status == TaskStatus.COMPLETED
    assert len(task.result.peaks) == 1


def test_invalid_configuration_rejected_up_front(context):
    with pytest.raises(ConfigValidationError):
        BatchQueue(context, None, {'analysis': {'detection': {'sensitivity': 5}}})


class BlockingLoader(TableLoader):
    """第一次加载时等待，直到测试发出取消请求"""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def load(self, source):
        self.started.set()
        self.release.wait(timeout=30)
        return super().load(source)


def test_cancel_between_tasks(context, table_file, tmp_path):
    copies = []
    for i in range(3):
        path = tmp_path / f"copy{i}.tsv"
        path.write_bytes(table_file.read_bytes())
        copies.append(str(path))

    loader = BlockingLoader()
    queue = BatchQueue(context, loader, CONFIGURATION)
    tasks = queue.add_tasks(copies)

    future = queue.start()
    assert loader.started.wait(timeout=30)
    queue.cancel()
    loader.release.set()
    summary = future.result(timeout=120)
    queue.shutdown()

    # 正在执行的任务照常完成，其余任务被取消
    assert tasks[0].status == TaskStatus.COMPLETED
    assert [t.status for t in tasks[1:]] == [TaskStatus.CANCELLED, TaskStatus.CANCELLED]
    assert summary['cancelled'] == 2

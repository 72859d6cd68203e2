import threading

import pytest

from tierfs.workqueue import WorkQueue


def test_new_queue_is_empty():
    assert WorkQueue().empty() is True


def test_fifo_order():
    queue = WorkQueue()
    for item in ["a", "b", "c"]:
        queue.push(item)
    assert queue.empty() is False
    assert [queue.pop(), queue.pop(), queue.pop()] == ["a", "b", "c"]
    assert queue.empty() is True


def test_pop_empty_raises():
    with pytest.raises(IndexError):
        WorkQueue().pop()


def test_many_producers():
    queue = WorkQueue()

    def produce(base):
        for offset in range(100):
            queue.push(base + offset)

    threads = [threading.Thread(target=produce, args=(n * 1000,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    items = []
    while not queue.empty():
        items.append(queue.pop())
    assert len(items) == 400
    assert sorted(items) == sorted(n * 1000 + k for n in range(4) for k in range(100))
    for base in range(4):
        own = [i for i in items if i // 1000 == base]
        assert own == sorted(own)
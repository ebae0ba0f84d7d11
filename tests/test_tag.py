import pytest

from acvdvolume.tag import MAX_TIME, Tag, TagWithList


def test_new_items_are_untagged():
    tag = Tag()
    tag.set_number_of_items(4)
    assert [tag.is_tagged(i) for i in range(4)] == [False] * 4
    assert len(tag) == 4


def test_tag_and_reset():
    tag = Tag()
    tag.set_number_of_items(3)
    tag.tag(1)
    assert tag.is_tagged(1)
    assert not tag.is_tagged(0)
    tag.reset()
    assert not tag.is_tagged(1)


def test_untag():
    tag = Tag()
    tag.set_number_of_items(2)
    tag.tag(0)
    tag.untag(0)
    assert not tag.is_tagged(0)


def test_reset_at_overflow_restarts_counter():
    tag = Tag()
    tag.set_number_of_items(2)
    tag.time = MAX_TIME
    tag.tag(0)
    assert tag.is_tagged(0)
    tag.reset()
    assert tag.time == 0
    assert not tag.is_tagged(0)
    assert not tag.is_tagged(1)


def test_out_of_range_item_raises():
    tag = Tag()
    tag.set_number_of_items(2)
    with pytest.raises(IndexError):
        tag.tag(2)
    with pytest.raises(IndexError):
        tag.is_tagged(-1)


def test_negative_count_raises():
    with pytest.raises(ValueError):
        Tag().set_number_of_items(-1)


def test_tag_with_list_records_each_item_once():
    tag = TagWithList()
    tag.set_number_of_items(5)
    tag.tag(3)
    tag.tag(1)
    tag.tag(3)
    assert tag.tagged_items == [3, 1]
    assert tag.is_tagged(3) and tag.is_tagged(1)


def test_tag_with_list_reset_clears_list():
    tag = TagWithList()
    tag.set_number_of_items(3)
    tag.tag(0)
    tag.reset()
    assert tag.tagged_items == []
    assert not tag.is_tagged(0)
    tag.tag(0)
    assert tag.tagged_items == [0]
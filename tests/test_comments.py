import pytest

from thread_sync.comments import Comment, CommentObject, CommentStore
from thread_sync.errors import NotFoundError


@pytest.fixture
def comments(db):
    return CommentStore(db)


def _norm(*comments):
    return [Comment(object=c.object, author_user_id=c.author_user_id, body=c.body) for c in comments]


@pytest.mark.anyio
async def test_comments_round_trip_query_and_delete(comments):
    want0 = Comment(object=CommentObject.thread(1), author_user_id=7, body="b0")
    comment0 = await comments.create(want0)
    comment1 = await comments.create(Comment(object=CommentObject.thread(1), author_user_id=7, body="b1"))

    assert comment0.id != 0
    assert _norm(comment0) == [want0]

    fetched = await comments.get_by_id(comment0.id)
    assert fetched.id == comment0.id
    assert _norm(fetched) == [want0]

    assert len(await comments.list()) == 2
    assert await comments.count() == 2

    matched = await comments.list(query="b1")
    assert _norm(*matched) == _norm(comment1)

    await comments.delete_by_id(comment0.id)
    assert [c.id for c in await comments.list()] == [comment1.id]
    assert await comments.count() == 1


@pytest.mark.anyio
async def test_list_by_object(comments):
    await comments.create(Comment(object=CommentObject.campaign(1), author_user_id=7, body="on campaign 1"))
    await comments.create(Comment(object=CommentObject.campaign(2), author_user_id=7, body="on campaign 2"))
    await comments.create(Comment(object=CommentObject.thread(1), author_user_id=7, body="on thread 1"))

    campaign1 = await comments.list(object=CommentObject.campaign(1))
    assert [c.body for c in campaign1] == ["on campaign 1"]
    assert await comments.count(object=CommentObject.campaign(2)) == 1
    assert [c.body for c in await comments.list(object=CommentObject.thread(1))] == ["on thread 1"]
    assert await comments.count(query="campaign", object=CommentObject.thread(1)) == 0


@pytest.mark.anyio
async def test_query_treats_wildcards_literally(comments):
    await comments.create(Comment(object=CommentObject.thread(1), author_user_id=7, body="100% done"))
    await comments.create(Comment(object=CommentObject.thread(1), author_user_id=7, body="1000 done"))

    assert [c.body for c in await comments.list(query="0%")] == ["100% done"]


@pytest.mark.anyio
async def test_missing_comment(comments):
    with pytest.raises(NotFoundError):
        await comments.get_by_id(42)
    with pytest.raises(NotFoundError):
        await comments.delete_by_id(42)


def test_comment_object_requires_exactly_one_kind():
    with pytest.raises(ValueError):
        CommentObject()
    with pytest.raises(ValueError):
        CommentObject(campaign_id=1, thread_id=2)
    assert CommentObject.thread(3).thread_id == 3

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from app.models.comment import Comment
from app.models.product import Product
from app.services.comment_service import comment_row_lock


async def post_comment(client, ctx, headers, slug, content, parent_id=None):
    body = {"content": content}
    if parent_id:
        body["parentId"] = parent_id
    r = await client.post(f"/api/v1/products/{slug}/comments", json=body, headers=headers)
    await ctx.tasks.join()
    return r


@pytest.mark.asyncio
async def test_reply_depth_is_capped(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    alice = await make_user()
    bob = await make_user()
    await make_product(maker, "Deep Thread")

    r = await post_comment(client, ctx, auth(alice), "deep-thread", "First!")
    assert r.status_code == 201, r.text
    root = r.json()["data"]
    assert root["depth"] == 0 and root["rootId"] is None

    parent = root
    chain = [root]
    for i in range(1, 7):
        author = bob if i % 2 else alice
        r = await client.post(
            f"/api/v1/products/deep-thread/comments/{parent['id']}/reply",
            json={"content": f"reply number {i}"},
            headers=auth(author),
        )
        await ctx.tasks.join()
        assert r.status_code == 201, r.text
        parent = r.json()["data"]
        chain.append(parent)

    assert [c["depth"] for c in chain] == [0, 1, 2, 3, 4, 5, 5]
    assert all(c["rootId"] == root["id"] for c in chain[1:])
    assert chain[-1]["parentId"] == chain[-2]["id"]
    assert chain[-1]["replyingTo"] == chain[-2]["userId"]

    r = await client.get("/api/v1/products/deep-thread/comments")
    listed = r.json()["data"]
    assert len(listed) == 1
    assert [c["id"] for c in listed[0]["replies"]] == [c["id"] for c in chain[1:]]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content, status",
    [("ok", 201), ("x", 400), ("   x   ", 400), ("a" * 1000, 201), ("a" * 1001, 400), ("  " + "a" * 1000 + "  ", 201)],
)
async def test_comment_length_limits(client, ctx, make_user, make_product, auth, content, status):
    maker = await make_user()
    writer = await make_user()
    await make_product(maker, "Talkative")

    r = await post_comment(client, ctx, auth(writer), "talkative", content)
    assert r.status_code == status
    if status == 201:
        assert r.json()["data"]["content"] == content.strip()


@pytest.mark.asyncio
async def test_cannot_reply_to_own_comment(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    writer = await make_user()
    await make_product(maker, "Echo Chamber")

    root = (await post_comment(client, ctx, auth(writer), "echo-chamber", "hello there")).json()["data"]
    r = await post_comment(client, ctx, auth(writer), "echo-chamber", "me again", parent_id=root["id"])
    assert r.status_code == 400

    r = await post_comment(client, ctx, auth(writer), "echo-chamber", "orphan", parent_id="missing")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_comments_need_published_product_and_login(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    writer = await make_user()
    await make_product(maker, "Stealth Mode", status="Draft")
    await make_product(maker, "Open Doors")

    assert (await post_comment(client, ctx, auth(writer), "stealth-mode", "hello")).status_code == 400
    assert (await post_comment(client, ctx, {}, "open-doors", "hello")).status_code == 401


@pytest.mark.asyncio
async def test_delete_removes_subtree(client, ctx, session_maker, make_user, make_product, auth):
    maker = await make_user()
    alice = await make_user()
    bob = await make_user()
    product = await make_product(maker, "Pruned")

    root = (await post_comment(client, ctx, auth(alice), "pruned", "root comment")).json()["data"]
    b1 = (await post_comment(client, ctx, auth(bob), "pruned", "branch one", root["id"])).json()["data"]
    leaf = (await post_comment(client, ctx, auth(alice), "pruned", "leaf", b1["id"])).json()["data"]
    b2 = (await post_comment(client, ctx, auth(bob), "pruned", "branch two", root["id"])).json()["data"]
    other_root = (await post_comment(client, ctx, auth(bob), "pruned", "another root")).json()["data"]

    r = await client.delete(f"/api/v1/products/pruned/comments/{b1['id']}", headers=auth(alice))
    assert r.status_code == 403

    r = await client.delete(f"/api/v1/products/pruned/comments/{b1['id']}", headers=auth(bob))
    assert r.json()["data"] == {"deleted": 2}

    async with session_maker() as db:
        remaining = set((await db.execute(select(Comment.id))).scalars().all())
        assert remaining == {root["id"], b2["id"], other_root["id"]}
        assert leaf["id"] not in remaining
        assert (await db.get(Product, product.id)).comment_count == 3

    # the product maker may remove any thread on their product
    r = await client.delete(f"/api/v1/products/pruned/comments/{root['id']}", headers=auth(maker))
    assert r.json()["data"] == {"deleted": 2}

    async with session_maker() as db:
        assert (await db.execute(select(func.count(Comment.id)))).scalar() == 1
        assert (await db.get(Product, product.id)).comment_count == 1


@pytest.mark.asyncio
async def test_edit_and_like(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    writer = await make_user()
    fan = await make_user()
    await make_product(maker, "Likeable")

    comment = (await post_comment(client, ctx, auth(writer), "likeable", "nice work")).json()["data"]
    url = f"/api/v1/products/likeable/comments/{comment['id']}"

    r = await client.put(url, json={"content": "edited"}, headers=auth(fan))
    assert r.status_code == 403
    r = await client.put(url, json={"content": " really nice work "}, headers=auth(writer))
    assert r.json()["data"]["content"] == "really nice work"
    assert r.json()["data"]["isEdited"] is True

    r = await client.post(f"{url}/like", headers=auth(fan))
    assert r.json()["data"] == {"liked": True, "count": 1}

    r = await client.get("/api/v1/products/likeable/comments", headers=auth(fan))
    assert r.json()["data"][0]["likes"] == {"count": 1, "isLiked": True}
    r = await client.get("/api/v1/products/likeable/comments")
    assert r.json()["data"][0]["likes"] == {"count": 1, "isLiked": False}

    r = await client.post(f"{url}/like", headers=auth(fan))
    assert r.json()["data"] == {"liked": False, "count": 0}
    r = await client.get("/api/v1/products/likeable/comments", headers=auth(fan))
    assert r.json()["data"][0]["likes"] == {"count": 0, "isLiked": False}


def test_like_toggle_reads_the_comment_under_a_row_lock():
    sql = str(comment_row_lock("c1").compile(dialect=postgresql.dialect()))
    assert sql.rstrip().endswith("FOR UPDATE")
    assert "comments.id = " in sql

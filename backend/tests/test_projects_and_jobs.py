import pytest

from app.errors import ValidationError
from app.services.job_service import parse_fields
from app.services.search_history_service import normalize_query


async def create_project(client, headers, **fields):
    body = {"title": "Weekend Hack", **fields}
    r = await client.post("/api/v1/projects", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["data"]


# --- projects ---

@pytest.mark.asyncio
async def test_create_and_fetch_project(client, make_user, auth):
    owner = await make_user()
    visitor = await make_user()

    project = await create_project(client, auth(owner), tags=["Python", "python", " API "], category="Tools")
    assert project["slug"] == "weekend-hack"
    assert project["tags"] == ["python", "api"]
    assert project["ownerId"] == owner.id

    again = await create_project(client, auth(owner))
    assert again["slug"] == "weekend-hack-2"

    r = await client.get(f"/api/v1/projects/{project['slug']}", headers=auth(owner))
    assert r.json()["data"]["views"] == 0
    r = await client.get(f"/api/v1/projects/{project['id']}", headers=auth(visitor))
    assert r.json()["data"]["views"] == 1
    r = await client.get(f"/api/v1/projects/{project['id']}")
    assert r.json()["data"]["views"] == 2


@pytest.mark.asyncio
async def test_private_projects(client, make_user, auth):
    owner = await make_user()
    visitor = await make_user()
    admin = await make_user(role="admin")
    hidden = await create_project(client, auth(owner), title="Stealth", isPublic=False)
    await create_project(client, auth(owner), title="Public One")

    assert (await client.get(f"/api/v1/projects/{hidden['id']}", headers=auth(visitor))).status_code == 404
    assert (await client.get(f"/api/v1/projects/{hidden['id']}", headers=auth(admin))).status_code == 200

    r = await client.get("/api/v1/projects")
    assert [p["title"] for p in r.json()["data"]] == ["Public One"]
    r = await client.get("/api/v1/projects", params={"owner": owner.id}, headers=auth(owner))
    assert {p["title"] for p in r.json()["data"]} == {"Stealth", "Public One"}
    r = await client.get("/api/v1/projects", params={"owner": owner.id}, headers=auth(visitor))
    assert [p["title"] for p in r.json()["data"]] == ["Public One"]


@pytest.mark.asyncio
async def test_project_filters_and_sort(client, make_user, auth):
    owner = await make_user()
    await create_project(client, auth(owner), title="Beta Board", category="Design", tags=["ui"])
    await create_project(client, auth(owner), title="Alpha API", category="Tools", tags=["api"], description="fast REST")

    async def titles(**params):
        r = await client.get("/api/v1/projects", params=params)
        return [p["title"] for p in r.json()["data"]]

    assert await titles(sort="title") == ["Alpha API", "Beta Board"]
    assert await titles(category="Design") == ["Beta Board"]
    assert await titles(tag="API") == ["Alpha API"]
    assert await titles(search="rest") == ["Alpha API"]
    assert await titles(search="%") == []
    assert await titles(search="_lpha") == []


@pytest.mark.asyncio
async def test_like_share_click_and_analytics(client, ctx, make_user, auth):
    owner = await make_user()
    fan = await make_user()
    project = await create_project(client, auth(owner))
    inbox = ctx.events.subscribe(f"user:{owner.id}")
    pid = project["id"]

    r = await client.post(f"/api/v1/projects/{pid}/like", headers=auth(fan))
    assert r.json()["data"] == {"liked": True, "likes": 1}
    assert inbox.queue.get_nowait()["data"]["type"] == "system"
    r = await client.post(f"/api/v1/projects/{pid}/like", headers=auth(fan))
    assert r.json()["data"] == {"liked": False, "likes": 0}
    await client.post(f"/api/v1/projects/{pid}/like", headers=auth(fan))

    for platform in ("twitter", "twitter", "linkedin"):
        r = await client.post(f"/api/v1/projects/{pid}/share", json={"platform": platform})
    assert r.json()["data"] == {"shares": 3}
    r = await client.post(f"/api/v1/projects/{pid}/click", json={"target": "demo"})
    assert r.json()["data"] == {"clicks": 1}
    r = await client.post(f"/api/v1/projects/{pid}/click")
    assert r.json()["data"] == {"clicks": 2}

    for _ in range(2):
        await client.get(f"/api/v1/projects/{pid}", headers=auth(fan))

    assert (await client.get(f"/api/v1/projects/{pid}/analytics", headers=auth(fan))).status_code == 403
    r = await client.get(f"/api/v1/projects/{pid}/analytics", headers=auth(owner))
    analytics = r.json()["data"]
    assert analytics["overview"] == {"views": 2, "likes": 1, "shares": 3, "clicks": 2}
    assert analytics["sharePlatforms"] == {"twitter": 2, "linkedin": 1}
    assert analytics["clickTargets"] == {"demo": 1}
    assert analytics["engagementRate"] == 200.0


@pytest.mark.asyncio
async def test_update_and_delete_project(client, make_user, auth):
    owner = await make_user()
    other = await make_user()
    project = await create_project(client, auth(owner))
    url = f"/api/v1/projects/{project['id']}"

    assert (await client.patch(url, json={"title": "Hijacked"}, headers=auth(other))).status_code == 403
    r = await client.patch(url, json={"title": "Sunday Hack"}, headers=auth(owner))
    assert r.json()["data"]["slug"] == "sunday-hack"

    assert (await client.delete(url, headers=auth(other))).status_code == 403
    assert (await client.delete(url, headers=auth(owner))).status_code == 200
    assert (await client.get(url)).status_code == 404


# --- jobs ---

def test_parse_fields():
    assert parse_fields(None) == ["title", "description", "skills", "company.name"]
    assert parse_fields("title, skills") == ["title", "skills"]
    with pytest.raises(ValidationError):
        parse_fields("title,salary")


def test_normalize_query():
    assert normalize_query("  Senior   Python  Dev ") == "senior python dev"
    assert normalize_query(None) == ""


@pytest.mark.asyncio
async def test_job_search_modes(client, make_user, make_job):
    poster = await make_user()
    await make_job(poster, "Senior Python Developer", skills=["python", "django"], company_name="Acme")
    await make_job(poster, "Data Engineer", description="Spark pipelines in Python", location_type="remote")
    await make_job(poster, "Frontend Developer", skills=["react"], company_name="Python Labs", job_type="contract")
    await make_job(poster, "Closed Python Role", is_active=False)
    await make_job(poster, "Draft Python Role", status="Draft")

    async def titles(**params):
        r = await client.get("/api/v1/jobs", params=params)
        assert r.status_code == 200, r.text
        return sorted(j["title"] for j in r.json()["data"])

    assert len(await titles()) == 3
    assert await titles(q="python") == ["Data Engineer", "Frontend Developer", "Senior Python Developer"]
    assert await titles(q="python", fields="title") == ["Senior Python Developer"]
    assert await titles(q="python developer") == ["Senior Python Developer"]
    assert await titles(q="react spark", searchMode="flexible") == ["Data Engineer", "Frontend Developer"]
    assert await titles(q="react spark") == []
    assert await titles(locationType="remote") == ["Data Engineer"]
    assert await titles(jobType="contract", q="labs", fields="company.name") == ["Frontend Developer"]

    r = await client.get("/api/v1/jobs", params={"q": "x", "fields": "salary"})
    assert r.status_code == 400
    r = await client.get("/api/v1/jobs", params={"searchMode": "fuzzy"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_job_detail(client, make_user, make_job):
    poster = await make_user()
    job = await make_job(poster, "Platform Engineer", skills=["go"], salary_min=100000)

    r = await client.get(f"/api/v1/jobs/{job.id}")
    data = r.json()["data"]
    assert data["title"] == "Platform Engineer"
    assert data["skills"] == ["go"]
    assert data["salary_min"] == 100000
    assert (await client.get("/api/v1/jobs/unknown")).status_code == 404


@pytest.mark.asyncio
async def test_job_searches_are_recorded(client, ctx, make_user, make_job, auth):
    seeker = await make_user()
    poster = await make_user()
    await make_job(poster, "Python Developer")

    await client.get("/api/v1/jobs", params={"q": "Python"}, headers=auth(seeker))
    ctx.clock.advance(seconds=5)
    await client.get("/api/v1/jobs", params={"q": "  python "}, headers=auth(seeker))
    ctx.clock.advance(seconds=5)
    await client.get("/api/v1/jobs", params={"q": "golang"}, headers=auth(seeker))
    await client.get("/api/v1/jobs", params={"q": "anonymous"})

    r = await client.get("/api/v1/search/history", headers=auth(seeker))
    entries = r.json()["data"]
    assert [(e["query"], e["count"], e["type"]) for e in entries] == [("golang", 1, "jobs"), ("python", 2, "jobs")]

    r = await client.get("/api/v1/search/history", params={"type": "products"}, headers=auth(seeker))
    assert r.json()["data"] == []

    r = await client.delete("/api/v1/search/history", params={"type": "jobs"}, headers=auth(seeker))
    assert r.json()["data"] == {"cleared": 2}
    assert (await client.get("/api/v1/search/history")).status_code == 401

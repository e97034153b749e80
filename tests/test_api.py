"""
HTTP接口测试：标准响应格式与异常映射
"""


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_follow_round_trip(client, make_user, auth_header):
    alice = await make_user()
    bob = await make_user()

    response = await client.post(f"/api/follow/{bob.id}", headers=auth_header(alice.id))
    body = response.json()
    assert response.status_code == 200
    assert body["code"] == 200
    assert body["data"] == {"following": True, "followersCount": 1}

    status = await client.get(f"/api/follow/{bob.id}/status", headers=auth_header(alice.id))
    assert status.json()["data"] == {"following": True}

    followers = await client.get(f"/api/follow/{bob.id}/followers")
    data = followers.json()["data"]
    assert [user["id"] for user in data["users"]] == [alice.id]
    assert data["pagination"] == {"page": 1, "limit": 20, "total": 1, "totalPages": 1}


async def test_self_follow_maps_to_400_envelope(client, make_user, auth_header):
    alice = await make_user()

    response = await client.post(f"/api/follow/{alice.id}", headers=auth_header(alice.id))

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == 400
    assert body["message"] == "不能关注自己"
    assert body["data"] is None


async def test_missing_target_maps_to_404(client, make_user, auth_header):
    alice = await make_user()
    response = await client.post("/api/reactions/9999", headers=auth_header(alice.id))
    assert response.status_code == 404
    assert response.json()["code"] == 404


async def test_mutations_require_token(client, make_user):
    bob = await make_user()
    response = await client.post(f"/api/follow/{bob.id}")
    assert response.status_code == 401

    bad = await client.post(f"/api/follow/{bob.id}", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


async def test_repeated_unfollow_keeps_state_off(client, make_user, auth_header):
    alice = await make_user()
    bob = await make_user()
    await client.post(f"/api/follow/{bob.id}", headers=auth_header(alice.id))

    for _ in range(2):
        response = await client.delete(f"/api/follow/{bob.id}", headers=auth_header(alice.id))
        assert response.status_code == 200
        assert response.json()["data"] == {"following": False, "followersCount": 0}

    status = await client.get(f"/api/follow/{bob.id}/status", headers=auth_header(alice.id))
    assert status.json()["data"] == {"following": False}
    following = await client.get(f"/api/follow/{alice.id}/following")
    assert following.json()["data"]["pagination"]["total"] == 0


async def test_repeated_unlike_keeps_state_off(client, make_user, make_video, auth_header):
    owner = await make_user()
    fan = await make_user()
    other = await make_user()
    video = await make_video(owner)
    await client.post(f"/api/reactions/{video.id}", headers=auth_header(fan.id))
    await client.post(f"/api/reactions/{video.id}", headers=auth_header(other.id))

    for _ in range(2):
        response = await client.delete(f"/api/reactions/{video.id}", headers=auth_header(fan.id))
        assert response.status_code == 200
        assert response.json()["data"] == {"liked": False, "likes": 1}

    status = await client.get(f"/api/reactions/video/{video.id}/status", headers=auth_header(fan.id))
    assert status.json()["data"] == {"liked": False}
    missing = await client.delete("/api/reactions/9999", headers=auth_header(fan.id))
    assert missing.status_code == 404


async def test_video_flow(client, make_user, auth_header):
    owner = await make_user()
    fan = await make_user()

    created = await client.post("/api/videos", headers=auth_header(owner.id), json={
        "title": "第一支视频",
        "videoUrl": "https://cdn.example.com/v/1.mp4",
        "thumbnailUrl": "https://cdn.example.com/t/1.jpg",
        "duration": 45,
        "category": "short",
    })
    assert created.status_code == 200
    video_id = created.json()["data"]["id"]

    viewed = await client.post(f"/api/videos/{video_id}/view", json={
        "watchDuration": 45,
        "completionPercentage": 100,
    })
    assert viewed.json()["data"]["views"] == 1

    liked = await client.post(f"/api/reactions/{video_id}", headers=auth_header(fan.id))
    assert liked.json()["data"] == {"liked": True, "likes": 1}

    edited = await client.put(
        f"/api/comments/{comment_id}", headers=auth_header(fan.id), json={"text": "非常好看"},
    )
    assert edited.status_code == 200
    assert edited.json()["data"]["text"] == "非常好看"
    assert edited.json()["data"]["isEdited"] is True

    forbidden = await client.put(
        f"/api/comments/{comment_id}", headers=auth_header(owner.id), json={"text": "改掉"},
    )
    assert forbidden.status_code == 403

    feed = await client.get("/api/videos/feed")
    feed_data = feed.json()["data"]
    assert feed_data["mode"] == "popular"
    assert feed_data["pagination"]["total"] == 1
    stats = feed_data["videos"][0]["stats"]
    assert stats["views"] == 1
    assert stats["likes"] == 1
    assert stats["completionRate"] == 100.0

    bad_category = await client.get("/api/videos/feed", params={"category": "music"})
    assert bad_category.status_code == 400

    notifications = await client.get("/api/notifications", headers=auth_header(owner.id))
    listing = notifications.json()["data"]
    assert listing["unreadCount"] == 1
    notification_id = listing["notifications"][0]["id"]

    for _ in range(2):
        read = await client.put(f"/api/notifications/{notification_id}/read", headers=auth_header(owner.id))
        assert read.json()["data"]["isRead"] is True
    unread = await client.get("/api/notifications/unread-count", headers=auth_header(owner.id))
    assert unread.json()["data"] == {"unreadCount": 0}

    forbidden = await client.delete(f"/api/videos/{video_id}", headers=auth_header(fan.id))
    assert forbidden.status_code == 403

    deleted = await client.delete(f"/api/videos/{video_id}", headers=auth_header(owner.id))
    assert deleted.json()["data"]["removedLikes"] == 1

    stats = await client.get(f"/api/users/{owner.id}")
    assert stats.json()["data"]["videosCount"] == 0
    assert stats.json()["data"]["totalLikes"] == 0


async def test_following_feed_for_new_user_is_empty(client, make_user, auth_header):
    viewer = await make_user()

    response = await client.get("/api/follow/feed/following", headers=auth_header(viewer.id))

    data = response.json()["data"]
    assert data["videos"] == []
    assert data["pagination"]["total"] == 0


async def test_comments_endpoints(client, make_user, make_video, auth_header):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)

    created = await client.post(f"/api/comments/{video.id}", headers=auth_header(fan.id), json={"text": "好看"})
    comment_id = created.json()["data"]["id"]
    await client.post(
        f"/api/comments/{video.id}", headers=auth_header(owner.id),
        json={"text": "谢谢", "parentComment": comment_id},
    )

    top = (await client.get(f"/api/comments/{video.id}")).json()["data"]
    assert [comment["id"] for comment in top["comments"]] == [comment_id]
    replies = (await client.get(f"/api/comments/{comment_id}/replies")).json()["data"]
    assert replies["pagination"]["total"] == 1

    liked = await client.post(f"/api/comments/{comment_id}/like", headers=auth_header(owner.id))
    assert liked.json()["data"] == {"liked": True, "likes": 1}


async def test_analytics_is_private(client, make_user, auth_header):
    alice = await make_user()
    bob = await make_user()

    own = await client.get(f"/api/users/{alice.id}/analytics", headers=auth_header(alice.id))
    assert own.status_code == 200
    assert own.json()["data"]["videos"]["total"] == 0

    other = await client.get(f"/api/users/{alice.id}/analytics", headers=auth_header(bob.id))
    assert other.status_code == 403

from __future__ import annotations


def _create_chat(client, headers, **payload):
    response = client.post("/api/chats", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["chat"]


def test_create_chat_defaults_model(client, user_headers):
    chat = _create_chat(client, user_headers)

    assert chat["model"] == "anthropic/claude-3.5-sonnet"
    assert chat["title"] is None
    assert chat["createdAt"]

    listed = client.get("/api/chats", headers=user_headers).json()["chats"]
    assert [item["id"] for item in listed] == [chat["id"]]
    assert listed[0]["messageCount"] == 0


def test_first_user_message_titles_chat(client, user_headers):
    chat = _create_chat(client, user_headers, model="openai/gpt-4o")
    question = "How do rainbows form in the sky after rain showers?"

    response = client.post(
        f"/api/chats/{chat['id']}/messages",
        json={"role": "user", "content": question},
        headers=user_headers,
    )
    assert response.status_code == 201
    assert response.json()["message"]["chatId"] == chat["id"]

    client.post(
        f"/api/chats/{chat['id']}/messages",
        json={"role": "user", "content": "Second question"},
        headers=user_headers,
    )

    (listed,) = client.get("/api/chats", headers=user_headers).json()["chats"]
    assert listed["title"] == question[:50] + "..."
    assert listed["messageCount"] == 2

    messages = client.get(f"/api/chats/{chat['id']}/messages", headers=user_headers).json()["messages"]
    assert [message["content"] for message in messages][1] == "Second question"


def test_message_validation(client, user_headers):
    chat = _create_chat(client, user_headers)
    url = f"/api/chats/{chat['id']}/messages"

    bad_role = client.post(url, json={"role": "tool", "content": "x"}, headers=user_headers)
    assert bad_role.status_code == 400
    assert bad_role.json()["detail"] == 'Invalid role. Must be "user", "assistant", or "system"'

    bad_content = client.post(url, json={"role": "user", "content": ""}, headers=user_headers)
    assert bad_content.json()["detail"] == "Content is required and must be a string"


def test_rename_chat(client, user_headers):
    chat = _create_chat(client, user_headers, title="Old")

    renamed = client.patch(f"/api/chats/{chat['id']}", json={"title": " New "}, headers=user_headers)
    assert renamed.json()["chat"]["title"] == "New"

    cleared = client.patch(f"/api/chats/{chat['id']}", json={"title": None}, headers=user_headers)
    assert cleared.json()["chat"]["title"] is None

    invalid = client.patch(f"/api/chats/{chat['id']}", json={"title": "  "}, headers=user_headers)
    assert invalid.status_code == 400
    assert invalid.json()["detail"] == "Title must be a non-empty string or null"


def test_other_users_cannot_touch_chat(client, user_headers, make_user):
    chat = _create_chat(client, user_headers)
    intruder = make_user("mallory@example.com")

    for method, path in (
        ("patch", f"/api/chats/{chat['id']}"),
        ("delete", f"/api/chats/{chat['id']}"),
        ("get", f"/api/chats/{chat['id']}/messages"),
    ):
        kwargs = {"json": {"title": "x"}} if method == "patch" else {}
        response = getattr(client, method)(path, headers=intruder, **kwargs)
        assert response.status_code == 404
        assert response.json()["detail"] == "Chat not found"

    assert client.get("/api/chats", headers=intruder).json()["chats"] == []


def test_delete_chat_and_delete_all(client, user_headers, make_user):
    first = _create_chat(client, user_headers)
    _create_chat(client, user_headers)
    other_headers = make_user("bob@example.com")
    other = _create_chat(client, other_headers)

    assert client.delete(f"/api/chats/{first['id']}", headers=user_headers).json() == {"success": True}
    assert client.delete(f"/api/chats/{first['id']}", headers=user_headers).status_code == 404

    deleted = client.delete("/api/chats", headers=user_headers).json()
    assert deleted == {"success": True, "deletedCount": 1}
    assert [chat["id"] for chat in client.get("/api/chats", headers=other_headers).json()["chats"]] == [
        other["id"]
    ]

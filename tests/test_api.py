from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.services import enricher

AUTH_HEADER = (
    'MediaBrowser Client="Infuse-Direct", Device="Apple TV", '
    'DeviceId="F3913A92", Version="8.0"'
)


@pytest.fixture
def client(tmp_path, media_root):
    settings = Settings(
        _env_file=None,
        COLLECTIONS=[
            {"name": "Movies", "kind": "movies", "source_id": 1, "directory": str(media_root / "movies")},
            {"name": "Shows", "kind": "shows", "source_id": 2, "directory": str(media_root / "shows")},
        ],
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        IMAGE_CACHE_DIR=str(tmp_path / "cache"),
        USER_NAME="user",
    )
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def token(client) -> str:
    response = client.post(
        "/Users/AuthenticateByName",
        json={"Username": "user", "Pw": "ignored"},
        headers={"X-Emby-Authorization": AUTH_HEADER},
    )
    assert response.status_code == 200
    return response.json()["AccessToken"]


@pytest.fixture
def headers(token) -> dict[str, str]:
    return {"X-Emby-Token": token}


def _items(client, headers, **params):
    response = client.get("/Items", params=params, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def _id_of(client, headers, name, parent="collection_1"):
    for item in _items(client, headers, ParentId=parent)["Items"]:
        if item["Name"] == name:
            return item["Id"]
    raise AssertionError(name)


def test_public_system_info_needs_no_token(client):
    payload = client.get("/System/Info/Public").json()

    assert payload["ProductName"] == "Jellyfin Server"
    assert payload["Id"] == "2b11644442754f02a0c1e45d2a9f5c71"


def test_login_returns_session(client):
    response = client.post(
        "/Users/AuthenticateByName",
        json={"Username": "user", "Pw": ""},
        headers={"X-Emby-Authorization": AUTH_HEADER},
    )
    payload = response.json()

    assert payload["User"]["Name"] == "user"
    assert payload["SessionInfo"]["DeviceName"] == "Apple TV"
    assert payload["SessionInfo"]["Client"] == "Infuse-Direct"
    assert len(payload["AccessToken"]) == 32


def test_login_with_malformed_json_is_bad_request(client):
    response = client.post(
        "/Users/AuthenticateByName",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_user_endpoints_require_token(client):
    response = client.get("/Items")

    assert response.status_code == 401
    assert "error" in response.json()
    assert client.get("/Items", headers={"X-Emby-Token": "bogus"}).status_code == 401


def test_token_accepted_from_query_and_authorization_header(client, token):
    assert client.get("/Users/Me", params={"api_key": token}).status_code == 200
    header = {"Authorization": f'MediaBrowser Client="x", Token="{token}"'}
    assert client.get("/Users/Me", headers=header).status_code == 200


def test_views_list_collections_and_playlists(client, headers):
    payload = client.get("/UserViews", headers=headers).json()

    assert [item["Name"] for item in payload["Items"]] == ["Movies", "Shows", "Playlists"]
    assert payload["Items"][0]["CollectionType"] == "movies"
    assert payload["Items"][1]["ChildCount"] == 1
    assert client.get("/Users/u/Views", headers=headers).json() == payload


def test_virtual_folders_and_grouping_options(client, headers):
    folders = client.get("/Library/VirtualFolders", headers=headers).json()
    groups = client.get("/Users/u/GroupingOptions", headers=headers).json()

    assert [folder["CollectionType"] for folder in folders] == ["movies", "tvshows"]
    assert groups[0] == {"Name": "Movies", "Id": "collection_1"}


def test_items_sorted_descending(client, headers):
    payload = _items(
        client, headers, ParentId="collection_1", SortBy="SortName", SortOrder="Descending"
    )

    assert [item["Name"] for item in payload["Items"]] == ["Beta", "Alpha"]
    assert payload["TotalRecordCount"] == 2


def test_items_filters_and_repeated_params(client, headers):
    one = client.get(
        "/Users/u/Items?parentId=collection_1&includeItemTypes=Movie&years=1999",
        headers=headers,
    ).json()
    both = client.get(
        "/Items?ParentId=collection_1&Years=1999&Years=2000", headers=headers
    ).json()

    assert [item["Name"] for item in one["Items"]] == ["Beta"]
    assert both["TotalRecordCount"] == 2


def test_items_pagination_envelope(client, headers):
    payload = _items(client, headers, StartIndex="1", Limit="1", SortBy="SortName")

    assert payload["StartIndex"] == 1
    assert payload["TotalRecordCount"] == 3
    assert [item["Name"] for item in payload["Items"]] == ["Beta"]


def test_item_detail_omits_poster_tag(client, headers):
    alpha = _id_of(client, headers, "Alpha")

    detail = client.get(f"/Users/u/Items/{alpha}", headers=headers).json()
    listed = _items(client, headers, ParentId="collection_1", SearchTerm="alpha")["Items"][0]

    assert "ImageTags" not in detail
    assert detail["BackdropImageTags"] == [detail["Etag"]]
    assert listed["ImageTags"] == {"Primary": listed["Etag"]}
    assert detail["UserData"]["PlaybackPositionTicks"] == 0
    assert detail["Etag"] == listed["Etag"]


def test_unknown_prefix_and_missing_items(client, headers):
    assert client.get("/Items/show_123", headers=headers).status_code == 400
    assert client.get("/Items/missing", headers=headers).status_code == 404
    assert client.get("/Items", params={"ParentId": "collection_9"}, headers=headers).status_code == 404


def test_show_navigation(client, headers):
    show = _id_of(client, headers, "The Show", parent="collection_2")

    seasons = client.get(f"/Shows/{show}/Seasons", headers=headers).json()["Items"]
    season_id = seasons[0]["Id"]
    episodes = client.get(
        f"/Shows/{show}/Episodes", params={"seasonId": season_id}, headers=headers
    ).json()["Items"]
    via_parent = _items(client, headers, ParentId=season_id)["Items"]
    seasons_via_parent = _items(client, headers, ParentId=show)["Items"]

    assert [season["Name"] for season in seasons] == ["Season 1", "Season 2"]
    assert [episode["Name"] for episode in episodes] == ["Pilot", "The Show S01E02"]
    assert [episode["Id"] for episode in via_parent] == [episode["Id"] for episode in episodes]
    assert len(seasons_via_parent) == 2
    assert "OfficialRating" not in episodes[0]


def test_latest_and_search(client, headers):
    latest = client.get("/Items/Latest", params={"Limit": "2"}, headers=headers).json()
    hints = client.get("/Search/Hints", params={"searchTerm": "SHOW"}, headers=headers).json()

    assert isinstance(latest, list)
    assert len(latest) == 2
    assert [hint["Name"] for hint in hints["SearchHints"]] == ["The Show"]


def test_filters(client, headers):
    filters = client.get("/Items/Filters", params={"ParentId": "collection_1"}, headers=headers).json()
    filters2 = client.get("/Items/Filters2", headers=headers).json()

    assert filters["Genres"] == ["Action", "Adventure", "Science Fiction"]
    assert filters["OfficialRatings"] == ["PG-13"]
    assert filters["Years"] == [1999, 2000]
    assert "Drama" in [genre["Name"] for genre in filters2["Genres"]]


def test_empty_listings(client, headers):
    for path in ("/Shows/NextUp", "/Persons", "/Items/Suggestions", "/Items/x/Similar", "/MediaSegments/x"):
        payload = client.get(path, headers=headers).json()
        assert payload == {"Items": [], "TotalRecordCount": 0, "StartIndex": 0}, path


def test_images(client, headers):
    alpha = _id_of(client, headers, "Alpha")

    poster = client.get(f"/Items/{alpha}/Images/Primary")
    backdrop = client.get(f"/Items/{alpha}/Images/Backdrop/0")
    redirect = client.get(
        f"/Items/{alpha}/Images/Primary",
        params={"tag": "redirect_https://img.example/a.jpg"},
        follow_redirects=False,
    )
    logo = client.get(f"/Items/{alpha}/Images/Logo")

    assert poster.status_code == 200
    assert poster.headers["cache-control"] == "max-age=2592000"
    assert poster.content[:2] == b"\xff\xd8"
    assert backdrop.status_code == 200
    assert redirect.status_code == 302
    assert redirect.headers["location"] == "https://img.example/a.jpg"
    assert redirect.headers["cache-control"] == "max-age=2592000"
    assert logo.status_code == 404


def test_playback_info_and_stream(client, headers):
    alpha = _id_of(client, headers, "Alpha")

    info = client.post(f"/Items/{alpha}/PlaybackInfo", headers=headers).json()
    stream = client.get(f"/Videos/{alpha}/stream")

    assert len(info["MediaSources"]) == 1
    assert info["MediaSources"][0]["MediaStreams"][0]["Codec"] == "h264"
    assert info["PlaySessionId"]
    assert stream.status_code == 200
    assert stream.content == b"\x00" * 16
    assert client.get("/Videos/missing/stream").status_code == 404


def test_play_state_feeds_resume(client, headers):
    alpha = _id_of(client, headers, "Alpha")

    progress = client.post(
        "/Sessions/Playing/Progress",
        json={"ItemId": alpha, "PositionTicks": 1234, "IsPaused": False},
        headers=headers,
    )
    resume = client.get("/Users/u/Items/Resume", headers=headers).json()

    assert progress.status_code == 204
    assert [item["Id"] for item in resume["Items"]] == [alpha]
    assert resume["Items"][0]["UserData"]["PlaybackPositionTicks"] == 1234


def test_play_state_rejects_malformed_payloads(client, headers):
    bad_json = client.post(
        "/Sessions/Playing",
        content=b"{",
        headers={**headers, "Content-Type": "application/json"},
    )
    negative = client.post(
        "/Sessions/Playing/Stopped",
        json={"ItemId": "x", "PositionTicks": -1},
        headers=headers,
    )

    assert bad_json.status_code == 400
    assert negative.status_code == 400


def test_delete_is_forbidden(client, headers):
    assert client.delete("/Items/anything", headers=headers).status_code == 403


def test_playlists(client, headers):
    alpha = _id_of(client, headers, "Alpha")
    beta = _id_of(client, headers, "Beta")

    created = client.post("/Playlists", json={"Name": "Mix", "Ids": [alpha]}, headers=headers)
    playlist_id = created.json()["Id"]
    added = client.post(f"/Playlists/{playlist_id}/Items", params={"ids": beta}, headers=headers)
    entries = client.get(f"/Playlists/{playlist_id}/Items", headers=headers).json()["Items"]
    removed = client.delete(
        f"/Playlists/{playlist_id}/Items",
        params={"entryIds": entries[0]["PlaylistItemId"]},
        headers=headers,
    )
    remaining = client.get(f"/Playlists/{playlist_id}/Items", headers=headers).json()["Items"]

    views = client.get("/UserViews", headers=headers).json()["Items"]
    folder_id = views[-1]["Id"]
    listed = _items(client, headers, ParentId=folder_id)["Items"]
    detail = client.get(f"/Items/{playlist_id}", headers=headers).json()

    assert playlist_id.startswith("playlist_")
    assert added.status_code == 204
    assert [entry["Id"] for entry in entries] == [alpha, beta]
    assert removed.status_code == 204
    assert [entry["Id"] for entry in remaining] == [beta]
    assert [playlist["Name"] for playlist in listed] == ["Mix"]
    assert detail["Type"] == "Playlist"
    assert detail["ChildCount"] == 1
    assert client.get("/Playlists/playlist_missing/Items", headers=headers).status_code == 404


def test_stop_near_the_end_marks_item_played(client, headers):
    alpha = _id_of(client, headers, "Alpha")
    run_time = 5400 * 10_000_000

    stopped = client.post(
        "/Sessions/Playing/Stopped",
        json={"ItemId": alpha, "PositionTicks": run_time - 10_000_000},
        headers=headers,
    )
    resume = client.get("/Items/Resume", headers=headers).json()
    detail = client.get(f"/Items/{alpha}", headers=headers).json()

    assert stopped.status_code == 204
    assert resume["Items"] == []
    assert detail["UserData"]["Played"] is True
    assert detail["UserData"]["PlayCount"] == 1
    assert detail["UserData"]["PlaybackPositionTicks"] == 0


def test_movie_parent_is_not_a_folder(client, headers):
    alpha = _id_of(client, headers, "Alpha")

    response = client.get("/Items", params={"ParentId": alpha}, headers=headers)

    assert response.status_code == 404


def test_descriptor_parsing_stays_off_the_event_loop(client, headers, monkeypatch):
    seen: list[str] = []
    real_load = enricher.load_descriptor

    def recording_load(path):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            seen.append("worker")
        else:
            seen.append("event-loop")
        return real_load(path)

    monkeypatch.setattr(enricher, "load_descriptor", recording_load)

    _items(client, headers)
    show = _id_of(client, headers, "The Show", parent="collection_2")
    client.get(f"/Shows/{show}/Episodes", headers=headers)

    assert seen
    assert set(seen) == {"worker"}

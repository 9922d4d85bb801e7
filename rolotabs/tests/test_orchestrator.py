"""End-to-end tests: orchestrator driven by an in-memory browser."""

import asyncio

import pytest

from rolotabs.daemon.bus import EventBus
from rolotabs.daemon.commands import Command, CommandType
from rolotabs.daemon.config import Config, GroupsConfig
from rolotabs.daemon.grouping import GroupCategory, HandleState
from rolotabs.daemon.index import flatten_tree
from rolotabs.daemon.main import RolotabsDaemon
from rolotabs.daemon.memory_host import InMemoryHost
from rolotabs.daemon.store import SettingsStore

# Ids handed out by the in-memory host for this snapshot
ROOT_ID = "3"
NEWS_ID = "4"
MAIL_ID = "5"
WORK_ID = "6"
DOCS_ID = "7"


@pytest.fixture
def scenario():
    return {
        "bookmarks": [
            {"title": "News", "url": "https://news.com"},
            {"title": "Mail", "url": "https://mail.com"},
            {"title": "Work", "children": [{"title": "Docs", "url": "https://docs.com"}]},
        ],
        "tabs": [
            {"url": "https://news.com/", "title": "News today"},
            {"url": "https://random.com", "title": "Random"},
        ],
        "active_tab": 0,
    }


@pytest.fixture
def config():
    return Config(store_path=None, debounce_ms=0)


async def start_daemon(scenario, config, store=None, on_state_changed=None):
    bus = EventBus()
    host = InMemoryHost.from_snapshot(scenario, root_title=config.root_folder_name, bus=bus)
    daemon = RolotabsDaemon(config, host, store or SettingsStore(), bus, on_state_changed)
    await daemon.start()
    return daemon


def bookmark(state, bookmark_id):
    """Find a bookmark in any zone of a panel state."""
    for bm in list(state.pinned) + flatten_tree(state.bookmarks):
        if bm.id == bookmark_id:
            return bm
    return None


def open_tab_ids(state):
    return [t.tab_id for t in state.open_tabs]


@pytest.mark.asyncio
async def test_start_associates_and_groups(scenario, config):
    """Startup finds the root folder, links tabs and groups linked ones."""
    daemon = await start_daemon(scenario, config)
    orchestrator = daemon.orchestrator
    state = await orchestrator.get_state()

    assert orchestrator.root_folder_id == ROOT_ID
    assert [c.title for c in state.bookmarks[0].children] == ["News", "Mail", "Work"]
    news = bookmark(state, NEWS_ID)
    assert news.tab_id == 1
    assert news.is_active
    assert open_tab_ids(state) == [2]

    saved_group = orchestrator.groups.handle(GroupCategory.SAVED)
    assert (await daemon.host.get_tab(1)).group_id == saved_group
    assert (await daemon.host.get_tab(2)).group_id is None
    assert (await daemon.host.get_group(saved_group)).title == config.groups.saved.title

    status = orchestrator.status()
    assert status['started']
    assert status['associations'] == 1
    assert status['groups']['saved']['state'] == "bound"

    await daemon.stop()


@pytest.mark.asyncio
async def test_start_creates_missing_root_folder():
    """A browser without the root folder gets one under Other Bookmarks."""
    config = Config(store_path=None, root_folder_name="Tabs")
    bus = EventBus()
    host = InMemoryHost(bus=bus)
    daemon = RolotabsDaemon(config, host, SettingsStore(), bus)
    await daemon.start()

    root_id = daemon.orchestrator.root_folder_id
    node = await host.get_bookmark(root_id)
    assert node.title == "Tabs"
    assert node.parent_id == "2"
    state = await daemon.orchestrator.get_state()
    assert state.bookmarks[0].id == root_id
    assert state.bookmarks[0].children == []

    await daemon.stop()


@pytest.mark.asyncio
async def test_activate_bookmark_opens_and_links_tab(scenario, config):
    daemon = await start_daemon(scenario, config)

    state = await daemon.execute(Command(type=CommandType.ACTIVATE_BOOKMARK, bookmark_id=MAIL_ID))

    mail = bookmark(state, MAIL_ID)
    assert mail.tab_id == 3
    assert mail.is_active
    assert state.active_tab_id == 3
    assert open_tab_ids(state) == [2]
    tab = await daemon.host.get_tab(3)
    assert tab.group_id == daemon.orchestrator.groups.handle(GroupCategory.SAVED)

    await daemon.stop()


@pytest.mark.asyncio
async def test_activate_loaded_bookmark_reuses_tab(scenario, config):
    """Clicking a loaded bookmark switches to its tab instead of opening another."""
    daemon = await start_daemon(scenario, config)
    await daemon.execute(Command(type=CommandType.ACTIVATE_OPEN_TAB, tab_id=2))

    state = await daemon.execute(Command(type=CommandType.ACTIVATE_BOOKMARK, bookmark_id=NEWS_ID))

    assert len(await daemon.host.query_tabs()) == 2
    assert state.active_tab_id == 1

    await daemon.stop()


@pytest.mark.asyncio
async def test_user_opened_tab_is_linked(scenario, config):
    daemon = await start_daemon(scenario, config)

    tab = daemon.host.open_tab("https://docs.com/")
    await daemon.settle()

    state = await daemon.orchestrator.get_state()
    assert bookmark(state, DOCS_ID).tab_id == tab.id
    assert tab.id not in open_tab_ids(state)
    assert (await daemon.host.get_tab(tab.id)).group_id is not None

    await daemon.stop()


@pytest.mark.asyncio
async def test_navigating_away_keeps_shadow_link(scenario, config):
    """A bookmarked tab that navigates elsewhere stays linked and is not an open tab."""
    daemon = await start_daemon(scenario, config)

    daemon.host.navigate(1, "https://elsewhere.com")
    await daemon.settle()

    state = await daemon.orchestrator.get_state()
    news = bookmark(state, NEWS_ID)
    assert news.tab_id == 1
    assert news.tab_url == "https://elsewhere.com"
    assert news.url == "https://news.com"
    assert open_tab_ids(state) == [2]

    await daemon.stop()


@pytest.mark.asyncio
async def test_navigating_to_other_bookmark_moves_link(scenario, config):
    daemon = await start_daemon(scenario, config)

    daemon.host.navigate(1, "https://mail.com")
    await daemon.settle()

    state = await daemon.orchestrator.get_state()
    assert bookmark(state, NEWS_ID).tab_id is None
    assert bookmark(state, MAIL_ID).tab_id == 1

    await daemon.stop()


@pytest.mark.asyncio
async def test_favicon_update(scenario, config):
    daemon = await start_daemon(scenario, config)

    daemon.host.set_favicon(1, "https://news.com/icon.png")
    await daemon.settle()

    state = await daemon.orchestrator.get_state()
    assert bookmark(state, NEWS_ID).fav_icon_url == "https://news.com/icon.png"

    await daemon.stop()


@pytest.mark.asyncio
async def test_closing_tab_unloads_bookmark(scenario, config):
    daemon = await start_daemon(scenario, config)

    await daemon.host.close_tab(1)
    await daemon.settle()

    state = await daemon.orchestrator.get_state()
    assert not bookmark(state, NEWS_ID).is_loaded
    # The saved group went with its only tab
    assert daemon.orchestrator.groups.state(GroupCategory.SAVED) is HandleState.UNBOUND

    await daemon.stop()


@pytest.mark.asyncio
async def test_close_bookmark_tab_command(scenario, config):
    daemon = await start_daemon(scenario, config)

    state = await daemon.execute(Command(type=CommandType.CLOSE_BOOKMARK_TAB, bookmark_id=NEWS_ID))

    assert not bookmark(state, NEWS_ID).is_loaded
    assert [t.id for t in await daemon.host.query_tabs()] == [2]

    await daemon.stop()


@pytest.mark.asyncio
async def test_promote_tab_pinned(scenario, config):
    """Saving an open tab straight into pinned links it and puts it in the pinned group."""
    daemon = await start_daemon(scenario, config)
    orchestrator = daemon.orchestrator

    state = await daemon.execute(Command(type=CommandType.PROMOTE_TAB, tab_id=2, pinned=True))

    assert len(state.pinned) == 1
    promoted = state.pinned[0]
    assert promoted.url == "https://random.com"
    assert promoted.title == "Random"
    assert promoted.tab_id == 2
    assert open_tab_ids(state) == []
    assert orchestrator.store.pinned_ids() == [promoted.id]
    # Pinned leaves are not repeated in the tree
    assert [c.title for c in state.bookmarks[0].children] == ["News", "Mail", "Work"]

    pinned_group = orchestrator.groups.handle(GroupCategory.PINNED)
    assert (await daemon.host.get_tab(2)).group_id == pinned_group
    assert [t.id for t in await daemon.host.query_tabs()] == [2, 1]

    await daemon.stop()


@pytest.mark.asyncio
async def test_promote_tab_into_folder(scenario, config):
    daemon = await start_daemon(scenario, config)

    state = await daemon.execute(Command(
        type=CommandType.PROMOTE_TAB, tab_id=2, parent_id=WORK_ID, index=0, title="Later",
    ))

    work = bookmark(state, WORK_ID)
    assert [c.title for c in work.children] == ["Later", "Docs"]
    assert work.children[0].tab_id == 2
    assert state.pinned == []

    await daemon.stop()


@pytest.mark.asyncio
async def test_pin_order_persists(scenario, config, tmp_path):
    """Pin, reorder and unpin are written to the settings file."""
    path = tmp_path / "settings.json"
    daemon = await start_daemon(scenario, config, SettingsStore(path))

    await daemon.execute(Command(type=CommandType.PIN_BOOKMARK, bookmark_id=NEWS_ID))
    await daemon.execute(Command(type=CommandType.PIN_BOOKMARK, bookmark_id=MAIL_ID))
    state = await daemon.execute(Command(type=CommandType.REORDER_PINNED, bookmark_id=MAIL_ID, index=0))

    assert [bm.id for bm in state.pinned] == [MAIL_ID, NEWS_ID]
    reloaded = SettingsStore(path)
    await reloaded.load()
    assert reloaded.pinned_ids() == [MAIL_ID, NEWS_ID]

    # The linked tab followed its bookmark into the pinned group
    pinned_group = daemon.orchestrator.groups.handle(GroupCategory.PINNED)
    assert (await daemon.host.get_tab(1)).group_id == pinned_group

    state = await daemon.execute(Command(type=CommandType.UNPIN_BOOKMARK, bookmark_id=NEWS_ID))
    assert [bm.id for bm in state.pinned] == [MAIL_ID]
    await reloaded.load()
    assert reloaded.pinned_ids() == [MAIL_ID]
    saved_group = daemon.orchestrator.groups.handle(GroupCategory.SAVED)
    assert (await daemon.host.get_tab(1)).group_id == saved_group

    await daemon.stop()


@pytest.mark.asyncio
async def test_pinned_order_survives_restart(scenario, config, tmp_path):
    """Stored pins are restored; ids that no longer exist are pruned and persisted."""
    path = tmp_path / "settings.json"
    seed = SettingsStore(path)
    await seed.set_pinned_ids([NEWS_ID, "999"])

    daemon = await start_daemon(scenario, config, SettingsStore(path))
    state = await daemon.orchestrator.get_state()

    assert [bm.id for bm in state.pinned] == [NEWS_ID]
    await seed.load()
    assert seed.pinned_ids() == [NEWS_ID]

    await daemon.stop()


@pytest.mark.asyncio
async def test_move_out_of_root_rebuilds(scenario, config):
    """A pinned bookmark moved out of the root disappears, unpinned, its tab freed."""
    daemon = await start_daemon(scenario, config)
    await daemon.execute(Command(type=CommandType.PIN_BOOKMARK, bookmark_id=NEWS_ID))
    rebuilds = daemon.orchestrator.stats['rebuilds']

    state = await daemon.execute(Command(type=CommandType.MOVE_BOOKMARK, bookmark_id=NEWS_ID, parent_id="1"))

    assert daemon.orchestrator.stats['rebuilds'] > rebuilds
    assert bookmark(state, NEWS_ID) is None
    assert state.pinned_ids == []
    assert daemon.orchestrator.store.pinned_ids() == []
    assert open_tab_ids(state) == [1, 2]
    assert (await daemon.host.get_tab(1)).group_id is None

    await daemon.stop()


@pytest.mark.asyncio
async def test_move_within_root(scenario, config):
    daemon = await start_daemon(scenario, config)

    state = await daemon.execute(Command(
        type=CommandType.MOVE_BOOKMARK, bookmark_id=NEWS_ID, parent_id=WORK_ID, index=1,
    ))

    work = bookmark(state, WORK_ID)
    assert [c.title for c in work.children] == ["Docs", "News"]
    assert work.children[1].tab_id == 1

    await daemon.stop()


@pytest.mark.asyncio
async def test_remove_bookmark_keeps_tab_open(scenario, config):
    daemon = await start_daemon(scenario, config)

    state = await daemon.execute(Command(type=CommandType.REMOVE_BOOKMARK, bookmark_id=NEWS_ID))

    assert bookmark(state, NEWS_ID) is None
    assert open_tab_ids(state) == [1, 2]
    assert (await daemon.host.get_tab(1)).group_id is None
    assert daemon.host.find_bookmarks(title="News") == []

    await daemon.stop()


@pytest.mark.asyncio
async def test_remove_folder_releases_tabs(scenario, config):
    daemon = await start_daemon(scenario, config)
    tab = daemon.host.open_tab("https://docs.com")
    await daemon.settle()

    state = await daemon.execute(Command(type=CommandType.REMOVE_FOLDER, bookmark_id=WORK_ID))

    assert [c.title for c in state.bookmarks[0].children] == ["News", "Mail"]
    assert tab.id in open_tab_ids(state)
    assert (await daemon.host.get_tab(tab.id)).group_id is None

    await daemon.stop()


@pytest.mark.asyncio
async def test_root_folder_cannot_be_removed(scenario, config):
    daemon = await start_daemon(scenario, config)

    state = await daemon.execute(Command(type=CommandType.REMOVE_FOLDER, bookmark_id=ROOT_ID))

    assert state.bookmarks[0].id == ROOT_ID
    await daemon.stop()


@pytest.mark.asyncio
async def test_rename_and_create_folder(scenario, config):
    daemon = await start_daemon(scenario, config)

    await daemon.execute(Command(type=CommandType.RENAME_BOOKMARK, bookmark_id=MAIL_ID, title="Inbox"))
    state = await daemon.execute(Command(type=CommandType.CREATE_FOLDER, title="Later"))

    children = state.bookmarks[0].children
    assert [c.title for c in children] == ["News", "Inbox", "Work", "Later"]
    assert children[3].is_folder
    assert children[3].children == []
    assert daemon.host.find_bookmarks(title="Inbox")[0].id == MAIL_ID

    await daemon.stop()


@pytest.mark.asyncio
async def test_replace_bookmark_url(scenario, config):
    """After navigating away, the bookmark can adopt the tab's new URL."""
    daemon = await start_daemon(scenario, config)
    daemon.host.navigate(1, "https://news.com/today")
    await daemon.settle()

    state = await daemon.execute(Command(type=CommandType.REPLACE_BOOKMARK_URL, bookmark_id=NEWS_ID))

    news = bookmark(state, NEWS_ID)
    assert news.url == "https://news.com/today"
    assert news.tab_id == 1
    assert (await daemon.host.get_bookmark(NEWS_ID)).url == "https://news.com/today"

    await daemon.stop()


@pytest.mark.asyncio
async def test_folder_and_onboarding_settings(scenario, config):
    daemon = await start_daemon(scenario, config)
    assert daemon.orchestrator.panel_settings()['show_onboarding']

    await daemon.execute(Command(type=CommandType.TOGGLE_FOLDER, bookmark_id=WORK_ID))
    await daemon.execute(Command(type=CommandType.COMPLETE_ONBOARDING))

    settings = daemon.orchestrator.panel_settings()
    assert settings['collapsed_folders'] == [WORK_ID]
    assert not settings['show_onboarding']

    await daemon.stop()


@pytest.mark.asyncio
async def test_bookmark_created_by_user(scenario, config):
    """Bookmarks made in the root are indexed and matched; elsewhere they are ignored."""
    daemon = await start_daemon(scenario, config)

    outside = await daemon.host.create_bookmark("1", "Bar", "https://random.com")
    await daemon.settle()
    assert outside.id not in daemon.orchestrator.index

    inside = await daemon.host.create_bookmark(ROOT_ID, "Blog", "https://random.com")
    await daemon.settle()

    state = await daemon.orchestrator.get_state()
    assert bookmark(state, inside.id).tab_id == 2
    assert open_tab_ids(state) == []

    await daemon.stop()


@pytest.mark.asyncio
async def test_bookmark_removed_by_user(scenario, config):
    daemon = await start_daemon(scenario, config)

    await daemon.host.remove_bookmark(NEWS_ID)
    await daemon.settle()

    state = await daemon.orchestrator.get_state()
    assert bookmark(state, NEWS_ID) is None
    assert 1 in open_tab_ids(state)

    await daemon.stop()


@pytest.mark.asyncio
async def test_bookmark_url_changed_by_user(scenario, config):
    daemon = await start_daemon(scenario, config)

    await daemon.host.update_bookmark(MAIL_ID, url="https://random.com")
    await daemon.settle()

    state = await daemon.orchestrator.get_state()
    assert bookmark(state, MAIL_ID).tab_id == 2
    assert open_tab_ids(state) == []

    await daemon.stop()


@pytest.mark.asyncio
async def test_existing_groups_recovered(scenario, config):
    """A saved group left from a previous run is reused; orphans leave it."""
    title = config.groups.saved.title
    scenario["tabs"][0]["group"] = title
    scenario["tabs"][1]["group"] = title

    daemon = await start_daemon(scenario, config)
    groups = await daemon.host.query_groups(title=title)

    assert len(groups) == 1
    assert daemon.orchestrator.groups.handle(GroupCategory.SAVED) == groups[0].id
    assert (await daemon.host.get_tab(1)).group_id == groups[0].id
    assert (await daemon.host.get_tab(2)).group_id is None

    await daemon.stop()


@pytest.mark.asyncio
async def test_groups_disabled(scenario):
    config = Config(store_path=None, groups=GroupsConfig(enabled=False))
    daemon = await start_daemon(scenario, config)

    await daemon.execute(Command(type=CommandType.PIN_BOOKMARK, bookmark_id=NEWS_ID))

    assert await daemon.host.query_groups() == []
    await daemon.stop()


@pytest.mark.asyncio
async def test_internal_tabs_hidden(scenario, config):
    scenario["tabs"].append({"url": "chrome://newtab/"})
    daemon = await start_daemon(scenario, config)

    state = await daemon.orchestrator.get_state()
    assert open_tab_ids(state) == [2]

    await daemon.stop()


@pytest.mark.asyncio
async def test_vanished_tab_command_is_recorded(scenario, config):
    """Host failures during a command are logged and recorded, not raised."""
    daemon = await start_daemon(scenario, config)

    state = await daemon.execute(Command(type=CommandType.CLOSE_OPEN_TAB, tab_id=99))

    assert open_tab_ids(state) == [2]
    summary = daemon.orchestrator.errors.get_error_summary()
    assert summary['total_errors'] == 1
    assert summary['top_errors'][0]['error'] == "commands:HostEntityMissing"

    await daemon.stop()


@pytest.mark.asyncio
async def test_every_command_has_a_handler(scenario, config):
    daemon = await start_daemon(scenario, config)
    assert set(daemon.orchestrator._command_handlers) == set(CommandType)
    await daemon.stop()


@pytest.mark.asyncio
async def test_state_notifications_are_debounced(scenario):
    """A burst of events produces far fewer notifications than events."""
    states = []

    async def on_state_changed(state):
        states.append(state)

    config = Config(store_path=None, debounce_ms=20)
    daemon = await start_daemon(scenario, config, on_state_changed=on_state_changed)

    for url in ("https://a.com", "https://b.com", "https://c.com"):
        daemon.host.open_tab(url)
    await daemon.settle()
    await asyncio.sleep(0.1)

    assert 1 <= len(states) < 7
    assert len(states[-1].open_tabs) == 4

    await daemon.stop()

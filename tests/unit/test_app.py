"""Tests for the Textual front end."""
import asyncio

from startall.tui.app import PaneLayout, PaneView, StartAllApp


def test_app_switches_views_with_phase(make_session):
    session = make_session(countdown_seconds=60)
    app = StartAllApp(session)

    async def scenario():
        async with app.run_test(size=(100, 30)) as pilot:
            assert app.query_one("#selection").display
            assert not app.query_one("#running").display

            await pilot.press("o")
            assert app.query_one("#settings").display
            assert not app.query_one("#selection").display

            await pilot.press("escape")
            assert app.query_one("#selection").display

    asyncio.run(scenario())


def test_empty_launch_exits_with_message(make_session):
    session = make_session(countdown_seconds=60)
    app = StartAllApp(session)

    async def scenario():
        async with app.run_test() as pilot:
            await pilot.press("enter")
            await pilot.pause()

    asyncio.run(scenario())
    assert app.return_value == "No scripts selected."


def test_split_rebuilds_pane_layout(make_session, spawner):
    session = make_session(countdown_seconds=60, default_selection=["web"])
    app = StartAllApp(session)

    async def scenario():
        async with app.run_test(size=(100, 30)) as pilot:
            await pilot.press("enter")
            assert app.query_one("#running").display

            await pilot.press("|")
            await pilot.pause()
            views = list(app.query_one(PaneLayout).query(PaneView))
            assert len(views) == 2
            assert views[1].has_class("focused")

            session.supervisor.shutdown_all()

    asyncio.run(scenario())

from .aggregator import (
    HomePage,
    NewPage,
    NotFound,
    OpenPage,
    PageModel,
    PostEditPage,
    PostPage,
    ProfilePage,
    RssPage,
    SettingsPage,
    build_home,
    build_new,
    build_open,
    build_post,
    build_post_edit,
    build_profile,
    build_rss,
    build_settings,
    find_track,
)
from .rss import render_rss

__all__ = [
    "HomePage",
    "NewPage",
    "NotFound",
    "OpenPage",
    "PageModel",
    "PostEditPage",
    "PostPage",
    "ProfilePage",
    "RssPage",
    "SettingsPage",
    "build_home",
    "build_new",
    "build_open",
    "build_post",
    "build_post_edit",
    "build_profile",
    "build_rss",
    "build_settings",
    "find_track",
    "render_rss",
]

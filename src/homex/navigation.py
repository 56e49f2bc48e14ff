# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from homex.auth.session import Role


@dataclass(frozen=True)
class NavItem:
    title: str
    url: str


ADMIN_NAV: List[NavItem] = [
    NavItem("Dashboard", "/admin"),
    NavItem("Leads & Contacts", "/admin/leads"),
    NavItem("My Team", "/admin/team"),
    NavItem("Properties & MLS", "/admin/properties"),
    NavItem("Deals & Pipeline", "/admin/deals"),
    NavItem("Tasks", "/admin/tasks"),
    NavItem("Viewing Schedules", "/admin/schedules"),
    NavItem("Messages", "/admin/messages"),
    NavItem("Transaction", "/admin/transaction"),
    NavItem("Issue Management", "/admin/issues"),
    NavItem("Commission Settings", "/admin/commission"),
    NavItem("Template Library", "/admin/templates"),
    NavItem("Announcements", "/admin/announcements"),
]

OPERATOR_NAV: List[NavItem] = [
    NavItem("Dashboard", "/operator"),
    NavItem("Leads", "/operator/leads"),
    NavItem("Properties", "/operator/properties"),
    NavItem("Pipeline", "/operator/pipeline"),
    NavItem("Tasks", "/operator/tasks"),
    NavItem("Viewing Schedules", "/operator/schedules"),
    NavItem("Messages", "/operator/messages"),
    NavItem("Automation", "/operator/automation"),
    NavItem("Performance Insights", "/operator/insights"),
    NavItem("Profile", "/operator/profile"),
]

ROLE_LABELS = {Role.ADMIN: "Administrator", Role.OPERATOR: "Operator", Role.CLIENT: "Client"}


def nav_for_path(pathname: str) -> List[NavItem]:
    return ADMIN_NAV if pathname.startswith("/admin") else OPERATOR_NAV


def find_item(pathname: str) -> Optional[NavItem]:
    target = pathname.rstrip("/") or "/"
    for item in nav_for_path(target):
        if item.url == target:
            return item
    return None


def initials(name: str) -> str:
    return "".join(part[0] for part in (name or "").split() if part).upper()

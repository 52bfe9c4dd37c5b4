"""Capacity-based node filtering and scoring for local storage claims."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .scheduler_config import SCHEDULER_BINPACK, SCHEDULER_SPREADOUT, SchedulerConfig
from .types import DEVICE_CAPACITY_KEY_PREFIX

log = logging.getLogger(__name__)

NAME = "local-storage"
MAX_SCORE = 10
NO_CLAIM_SCORE = 5


@dataclass
class PvcRequest:
    """The storage one claim asks for, in bytes."""

    exclusive: bool
    request: int


def request_gb(request: int) -> int:
    """Round a byte count up to whole GiB."""
    return ((request - 1) >> 30) + 1


def minimum_value_minus(array: list[int], pvc_request: PvcRequest) -> int:
    """Take a request from the smallest capacity that can hold it.

    ``array`` is sorted in place; the chosen entry is reduced by the request,
    or emptied if the request is exclusive. Returns the chosen index, or -1
    if no entry is large enough.
    """
    array.sort()
    needed = request_gb(pvc_request.request)
    index = next((i for i, value in enumerate(array) if value >= needed), -1)
    if index < 0:
        return index
    if pvc_request.exclusive:
        array[index] = 0
    else:
        array[index] -= needed
    return index


def build_allocatable_map(
    allocatable: Mapping[str, int],
    exclusive_groups: Iterable[str],
    config: SchedulerConfig,
) -> dict[str, int]:
    """Turn a node's allocatable resources into free GiB per disk group.

    Keys outside the capacity prefix are ignored; raw disks held exclusively
    are left out. Raises ValueError if nothing remains.
    """
    exclusive = set(exclusive_groups or ())
    result: dict[str, int] = {}
    for key, value in allocatable.items():
        if not key.startswith(DEVICE_CAPACITY_KEY_PREFIX):
            continue
        group = key[len(DEVICE_CAPACITY_KEY_PREFIX):]
        if config.check_raw_device_group(group.split("/")[0]) and group in exclusive:
            continue
        result[group] = value
    log.debug("allocatableMap: %s", result)
    if not result:
        raise ValueError("can't get device allocatableMap")
    return result


def _raw_capacities(allocatable_map: Mapping[str, int], group: str) -> list[int]:
    return [value for key, value in allocatable_map.items() if group in key]


def filter_node(
    pvc_request_map: Mapping[str, list[PvcRequest]],
    allocatable_map: Mapping[str, int],
    config: SchedulerConfig,
) -> bool:
    """Tell whether a node has room for every claim of a pod."""
    for group, requests in pvc_request_map.items():
        ordered = sorted(requests, key=lambda r: r.request, reverse=True)
        if config.check_raw_device_group(group):
            capacities = _raw_capacities(allocatable_map, group)
            for request in ordered:
                if minimum_value_minus(capacities, request) < 0:
                    log.debug("raw group %s cannot hold the request", group)
                    return False
        else:
            total = request_gb(sum(r.request for r in ordered))
            available = allocatable_map.get(group, 0)
            if total > available:
                log.debug("group %s: request %d, allocatable %d", group, total, available)
                return False
    return True


def score_node(
    pvc_request_map: Mapping[str, list[PvcRequest]],
    allocatable_map: Mapping[str, int],
    config: SchedulerConfig,
) -> int:
    """Score a node from 0 to MAX_SCORE by how its free space fits the claims.

    ``binpack`` favours fuller use of a group, ``spreadout`` the opposite.
    A pod without claims scores NO_CLAIM_SCORE; a group with no free space
    makes the node score 0.
    """
    if not pvc_request_map:
        return NO_CLAIM_SCORE
    strategy = config.strategy()
    total_score = 0.0
    for group, requests in pvc_request_map.items():
        needed = request_gb(sum(r.request for r in requests))
        if config.check_raw_device_group(group):
            available = sum(_raw_capacities(allocatable_map, group))
        else:
            available = allocatable_map.get(group, 0)
        if available <= 0:
            return 0
        ratio = needed / available
        if strategy == SCHEDULER_SPREADOUT:
            total_score += 1.0 - ratio
        elif strategy == SCHEDULER_BINPACK:
            total_score += ratio
    return int(total_score / len(pvc_request_map) * MAX_SCORE)
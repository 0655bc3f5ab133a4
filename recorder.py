# link-analytics-service/recorder.py
"""
Records one hit per resolved redirect.

Order of work for every redirect:
    a. client IP and country (best effort, never fails the redirect)
    b. device and browser from the user agent
    c. insert the hit record (errors propagate and fail the redirect)
    d. queue the click-counter job          (after the response)
    e. broadcast the enriched click event   (after the response)
"""
import logging

from classifiers import DIRECT, classify_browser, classify_device
from fastapi import BackgroundTasks, Request
from geo import get_client_ip, lookup_country
from messaging import broadcast_click, publish_click_job
from models import Link, Redirect

logger = logging.getLogger(__name__)


def format_click_time(redirect: Redirect) -> str:
    created = redirect.created_at
    return f"{created:%b} {created.day}, {created:%H:%M %p}"


def hit_record_payload(redirect: Redirect) -> dict:
    return {
        "id": str(redirect.id),
        "link_id": str(redirect.link_id),
        "ip_address": redirect.ip_address,
        "user_agent": redirect.user_agent,
        "referrer": redirect.referrer,
        "country": redirect.country,
        "device": redirect.device,
        "browser": redirect.browser,
        "created_at": redirect.created_at.isoformat() + "Z",
    }


def click_event_payload(redirect: Redirect, link: Link) -> dict:
    return {
        "id": str(redirect.id),
        "link_id": str(link.id),
        "link_slug": link.slug,
        "link_title": link.title or "Untitled",
        "time": format_click_time(redirect),
        "country": redirect.country or "Local/Private",
        "browser": redirect.browser or "Unknown",
        "device": redirect.device or "Desktop",
        "referrer": redirect.referrer or DIRECT,
        "target": link.target,
        "timestamp": redirect.created_at.isoformat() + "Z",
    }


async def record_redirect(
    link: Link, request: Request, background_tasks: BackgroundTasks
) -> Redirect:
    ip_address = get_client_ip(request)
    country = await lookup_country(ip_address)

    user_agent = request.headers.get("user-agent")
    referrer = request.headers.get("referer") or request.headers.get("referrer")

    redirect = Redirect(
        link_id=link.id,
        ip_address=ip_address,
        user_agent=user_agent,
        referrer=referrer,
        country=country,
        device=classify_device(user_agent),
        browser=classify_browser(user_agent),
    )
    await redirect.insert()
    logger.info(
        "Redirect recorded",
        extra={"link_id": str(link.id), "redirect_id": str(redirect.id), "country": country},
    )

    # Runs after the response is sent; neither publisher raises.
    background_tasks.add_task(publish_click_job, link.id, link.user_id)
    background_tasks.add_task(
        broadcast_click,
        link.user_id,
        click_event_payload(redirect, link),
        hit_record_payload(redirect),
    )
    return redirect

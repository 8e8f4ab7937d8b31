"""
Daily metric fields tracked per service.

Shared by the daily submission flow and the weekly report PDF, so both agree on
which keys a service records and how they are labelled.
"""
from typing import Dict, List, NamedTuple, Optional


class MetricField(NamedTuple):
    key: str
    label: str
    kind: str = "number"  # number|decimal
    step: Optional[str] = None


_PAID_SOCIAL = [
    MetricField("ad_spend", "Ad Spend ($)", "decimal", "0.01"),
    MetricField("impressions", "Impressions"),
    MetricField("clicks", "Clicks"),
    MetricField("ctr", "CTR (%)", "decimal", "0.01"),
    MetricField("conversions", "Conversions"),
    MetricField("cost_per_conversion", "Cost per Conversion ($)", "decimal", "0.01"),
    MetricField("leads", "Leads Generated"),
]

_SOCIAL = [
    MetricField("posts_published", "Posts Published"),
    MetricField("total_reach", "Total Reach"),
    MetricField("total_impressions", "Total Impressions"),
    MetricField("engagement_rate", "Engagement Rate (%)", "decimal", "0.01"),
    MetricField("new_followers", "New Followers"),
    MetricField("likes", "Total Likes"),
    MetricField("comments", "Comments"),
    MetricField("shares", "Shares"),
]

METRIC_FIELDS: Dict[str, List[MetricField]] = {
    "linkedin_outreach": [
        MetricField("connection_requests_sent", "Connection Requests Sent"),
        MetricField("accepted", "Connections Accepted"),
        MetricField("messages_sent", "Messages Sent"),
        MetricField("replies", "Replies Received"),
        MetricField("meetings_booked", "Meetings Booked"),
    ],
    "email_outreach": [
        MetricField("emails_sent", "Emails Sent"),
        MetricField("emails_opened", "Emails Opened"),
        MetricField("replies", "Replies Received"),
        MetricField("positive_replies", "Positive Replies"),
        MetricField("meetings_booked", "Meetings Booked"),
    ],
    "meta_ads": _PAID_SOCIAL,
    "facebook_ads": _PAID_SOCIAL,
    "instagram_ads": _PAID_SOCIAL,
    "google_ads": [
        MetricField("ad_spend", "Ad Spend ($)", "decimal", "0.01"),
        MetricField("impressions", "Impressions"),
        MetricField("clicks", "Clicks"),
        MetricField("ctr", "CTR (%)", "decimal", "0.01"),
        MetricField("cpc", "CPC ($)", "decimal", "0.01"),
        MetricField("conversions", "Conversions"),
        MetricField("conversion_rate", "Conversion Rate (%)", "decimal", "0.01"),
        MetricField("quality_score", "Quality Score", "decimal", "0.1"),
    ],
    "seo": [
        MetricField("organic_traffic", "Organic Traffic"),
        MetricField("keywords_ranking", "Keywords Ranking"),
        MetricField("top_10_keywords", "Top 10 Keywords"),
        MetricField("backlinks_acquired", "Backlinks Acquired"),
        MetricField("pages_optimized", "Pages Optimized"),
        MetricField("domain_authority", "Domain Authority", "decimal", "0.1"),
    ],
    "social_media": _SOCIAL,
    "social_media_management": _SOCIAL,
}

# Rates and scores are averaged over a week rather than summed
AVERAGED_KEYS = {"ctr", "engagement_rate", "conversion_rate", "quality_score", "domain_authority", "cpc", "cost_per_conversion"}

# Service catalog seeded on first start: slug -> (name, description)
SERVICE_CATALOG: Dict[str, tuple] = {
    "linkedin_outreach": ("LinkedIn Outreach", "Connection requests, messaging and meeting booking on LinkedIn"),
    "email_outreach": ("Email Outreach", "Cold email campaigns and follow-ups"),
    "meta_ads": ("Meta Ads", "Paid campaigns across Facebook and Instagram"),
    "facebook_ads": ("Facebook Ads", "Paid campaigns on Facebook"),
    "instagram_ads": ("Instagram Ads", "Paid campaigns on Instagram"),
    "google_ads": ("Google Ads", "Search and display campaigns"),
    "seo": ("SEO", "Organic search optimization"),
    "social_media": ("Social Media", "Organic social content"),
    "social_media_management": ("Social Media Management", "Managed social channels and community"),
}


def metric_fields(slug: Optional[str]) -> List[MetricField]:
    return METRIC_FIELDS.get(slug or "", [])


def get_default_metrics(slug: Optional[str]) -> Dict[str, float]:
    """Zeroed metrics for a service; unknown services track nothing."""
    return {f.key: 0 for f in metric_fields(slug)}


def weekly_totals(slug: Optional[str], daily: List[Dict]) -> Dict[str, float]:
    """
    Roll a week of daily metric maps up into label -> value.
    Counts are summed; rates and scores are averaged over the days that report them.
    """
    out: Dict[str, float] = {}
    for f in metric_fields(slug):
        values = []
        for m in daily:
            try:
                values.append(float((m or {}).get(f.key) or 0))
            except (TypeError, ValueError):
                continue
        if not values:
            continue
        if f.key in AVERAGED_KEYS:
            out[f.label] = round(sum(values) / len(values), 2)
        else:
            out[f.label] = round(sum(values), 2)
    return out

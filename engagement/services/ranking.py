"""
排序计算服务

纯函数：根据视频的计数和发布时间计算推荐分、互动率、完播率。
相同的计数与时间点总是得到相同的结果，推荐分只是缓存，不是事实来源。
"""
import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from engagement.core.config import settings
from engagement.utils.clock import days_between


@dataclass(frozen=True)
class RankingWeights:
    """推荐分权重，默认值来自配置，可按需覆盖"""
    views: float = 0.3
    likes: float = 0.4
    comments: float = 0.2
    shares: float = 0.1
    recency_boost: float = 0.5
    decay_days: float = 30.0

    @classmethod
    def from_settings(cls, **overrides) -> "RankingWeights":
        weights = cls(
            views=settings.RANKING_WEIGHT_VIEWS,
            likes=settings.RANKING_WEIGHT_LIKES,
            comments=settings.RANKING_WEIGHT_COMMENTS,
            shares=settings.RANKING_WEIGHT_SHARES,
            recency_boost=settings.RANKING_RECENCY_BOOST,
            decay_days=settings.RANKING_DECAY_DAYS,
        )
        return replace(weights, **overrides) if overrides else weights


@dataclass(frozen=True)
class RankingResult:
    """排序计算结果"""
    recommendation_score: float
    engagement_rate: float
    recency: float


def normalized(count: int) -> float:
    """对数归一化：log10(x + 1)，0 映射为 0"""
    return math.log10(max(count, 0) + 1)


def recency_factor(published_at: datetime, now: datetime, decay_days: float) -> float:
    """新鲜度：发布当天为1，在 decay_days 内线性衰减到0"""
    if decay_days <= 0:
        return 0.0
    days = max(0.0, days_between(published_at, now))
    return max(0.0, 1.0 - days / decay_days)


def recommendation_score(
    views: int,
    likes: int,
    comments: int,
    shares: int,
    published_at: datetime,
    now: datetime,
    weights: Optional[RankingWeights] = None,
) -> float:
    """
    计算推荐分

    score = (w_v*log(views) + w_l*log(likes) + w_c*log(comments) + w_s*log(shares))
            * (1 + recency_boost * recency)

    views 为0时推荐分为0
    """
    weights = weights or RankingWeights.from_settings()
    if views <= 0:
        return 0.0

    base = (
        weights.views * normalized(views)
        + weights.likes * normalized(likes)
        + weights.comments * normalized(comments)
        + weights.shares * normalized(shares)
    )
    recency = recency_factor(published_at, now, weights.decay_days)
    return max(0.0, base * (1 + weights.recency_boost * recency))


def engagement_rate(views: int, likes: int, comments: int, shares: int) -> float:
    """互动率（百分比）：(点赞+评论+分享) / 播放 * 100"""
    if views <= 0:
        return 0.0
    return round((likes + comments + shares) / views * 100, 2)


def completion_rate(completed_views: int, views: int) -> float:
    """完播率（百分比）"""
    if views <= 0:
        return 0.0
    return min(100.0, completed_views / views * 100)


def score_video(video, now: datetime, weights: Optional[RankingWeights] = None) -> RankingResult:
    """根据视频当前计数计算派生字段"""
    weights = weights or RankingWeights.from_settings()
    return RankingResult(
        recommendation_score=recommendation_score(
            video.views,
            video.likes,
            video.comments_count,
            video.shares,
            video.published_at,
            now,
            weights,
        ),
        engagement_rate=engagement_rate(
            video.views, video.likes, video.comments_count, video.shares
        ),
        recency=recency_factor(video.published_at, now, weights.decay_days),
    )


def apply_score(video, now: datetime, weights: Optional[RankingWeights] = None) -> RankingResult:
    """重新计算并写回视频的派生字段（写穿缓存）"""
    result = score_video(video, now, weights)
    video.recommendation_score = result.recommendation_score
    video.engagement_rate = result.engagement_rate
    video.completion_rate = completion_rate(video.completed_views, video.views)
    video.score_updated_at = now
    return result

"""
手动执行一轮维护：计数对账、过期数据清理、推荐分刷新
"""
import asyncio
import sys

from engagement.db.database import AsyncSessionLocal, engine
from engagement.services.maintenance import purge_expired, reconcile_all, refresh_stale_scores


async def run_once():
    """执行一次完整维护"""
    try:
        print("开始计数对账...")
        report = await reconcile_all(AsyncSessionLocal)
        print(f"✅ 检查用户 {report.checked_users} 个，视频 {report.checked_videos} 个")
        for drift in report.drifts:
            print(f"   修正 {drift.entity}#{drift.entity_id}.{drift.field}: {drift.stored} -> {drift.actual}")
        if not report.drifts:
            print("⚪ 没有发现计数漂移")

        print("\n清理过期数据...")
        purged = await purge_expired(AsyncSessionLocal)
        print(f"✅ 删除过期通知 {purged.notifications} 条，观看记录 {purged.views} 条")

        print("\n刷新推荐分...")
        refreshed = await refresh_stale_scores(AsyncSessionLocal)
        print(f"✅ 刷新 {refreshed} 个视频的推荐分")

        print("\n🎉 维护完成！")
        return 0
    except Exception as e:
        print(f"❌ 错误: {str(e)}")
        import traceback
        traceback.print_exc()
        return 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    print("=" * 60)
    print("互动引擎维护")
    print("=" * 60)
    sys.exit(asyncio.run(run_once()))

from prefect.client.schemas.schedules import CronSchedule
from flows.poi_engine_flow import poi_engine


if __name__ == "__main__":
    poi_engine.deploy(
        name="poi-engine-nightly",
        work_pool_name="geoblog-managed",
        tags=["ingest", "poi"],
        schedule=CronSchedule(
            cron="0 3 * * *",  # 3 AM Moscow, outside peak map traffic
            timezone="Europe/Moscow",
        ),
        description=(
            "Nightly POI crawl: resumes unfinished regions, pulls OSM and "
            "curated events, writes admitted markers into map_markers."
        ),
        # Required by Prefect 3 deploy() to avoid the remote storage check.
        # The process worker runs the flow from the checked-out repo.
        image="geoblog/poi-engine:placeholder",
    )

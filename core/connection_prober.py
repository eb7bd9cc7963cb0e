"""
Concurrent reachability probing of a resource's candidate connections.

Every candidate is probed at once and the first endpoint to answer wins,
so the chosen connection follows completion order rather than list order.
"""
import logging
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait

from .data_models import Connection, Resource
from .errors import NoValidConnections

logger = logging.getLogger(__name__)


def find_working_connection(resource: Resource, client) -> Connection:
    """
    Find any connection of ``resource`` that answers a probe.

    Args:
        resource: Resource whose connections are candidates
        client: ServiceClient used to probe each URI

    Returns:
        The first connection whose probe succeeded

    Raises:
        NoValidConnections: If no candidate answered
    """
    connections = list(resource.connections)
    if not connections:
        raise NoValidConnections(f"{resource.name} advertises no connections")

    logger.debug("Probing %d connections for %s", len(connections), resource.name)
    executor = ThreadPoolExecutor(
        max_workers=len(connections), thread_name_prefix="probe"
    )
    try:
        pending = {executor.submit(client.probe, conn.uri): conn for conn in connections}
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                conn = pending.pop(future)
                try:
                    answered = future.result()
                except Exception as exc:
                    logger.debug("Probe of %s raised: %s", conn.uri, exc)
                    continue
                if answered:
                    logger.info("Using connection %s for %s", conn.uri, resource.name)
                    return conn
    finally:
        # Stragglers finish on their own timeout; do not block the caller on them
        executor.shutdown(wait=False, cancel_futures=True)

    raise NoValidConnections(f"No connection of {resource.name} answered")

"""Dependency injection container for the device agent."""

from dependency_injector import containers, providers

from wscontroller.core.config import Settings
from wscontroller.services.link.identity import IdentityStore
from wscontroller.core.network import RouteReachability
from wscontroller.services.link.broadcaster import EventLogListener, LogNotificationSink
from wscontroller.services.link.client import ConnectionController
from wscontroller.services.link.effector import create_effector
from wscontroller.services.link.timers import TimerSet


class Container(containers.DeclarativeContainer):
    """Agent dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Collaborators
    identity_store = providers.Singleton(
        IdentityStore,
        number_file=settings.provided.identity_file,
        preferences_file=settings.provided.preferences_file,
    )

    reachability = providers.Singleton(
        RouteReachability,
        host=settings.provided.reachability_host,
        port=settings.provided.reachability_port,
    )

    effector = providers.Singleton(
        create_effector,
        command=settings.provided.effector_command,
        timeout=settings.provided.effector_timeout,
    )

    listener = providers.Singleton(
        EventLogListener
    )

    notifier = providers.Singleton(
        LogNotificationSink
    )

    timers = providers.Singleton(
        TimerSet
    )

    # Link
    controller = providers.Singleton(
        ConnectionController,
        settings=settings,
        identity=identity_store,
        effector=effector,
        reachability=reachability,
        listener=listener,
        notifier=notifier,
        timers=timers,
    )


# Global container instance
container = Container()

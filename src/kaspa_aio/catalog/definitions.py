"""Built-in profile definitions."""

from typing import Dict, List

from kaspa_aio.models.profile import (
    BuildSpec,
    DataVolume,
    PortBinding,
    ProfileSpec,
    ResourceRequirements,
    ServiceSpec,
)


# Settings that apply regardless of the selected profiles
GLOBAL_SETTINGS: Dict[str, str] = {
    "KASPA_NETWORK": "mainnet",
}

PHASE_NAMES: Dict[int, str] = {
    1: "infra",
    2: "indexers",
    3: "applications",
}

_NODE_PORTS = [
    PortBinding(setting="KASPA_NODE_RPC_PORT", container=16110),
    PortBinding(setting="KASPA_NODE_P2P_PORT", container=16111),
    PortBinding(setting="KASPA_NODE_WRPC_BORSH_PORT", container=17110),
]

_NODE_DEFAULTS = {
    "KASPA_NODE_RPC_PORT": "16110",
    "KASPA_NODE_P2P_PORT": "16111",
    "KASPA_NODE_WRPC_BORSH_PORT": "17110",
}


def _timescaledb(name: str, port_setting: str, password_setting: str, database: str, user: str) -> ServiceSpec:
    return ServiceSpec(
        name=name,
        image="timescale/timescaledb:latest-pg16",
        startup_order=1,
        ports=[PortBinding(setting=port_setting, container=5432)],
        environment={"POSTGRES_PASSWORD": password_setting},
        static_env={"POSTGRES_DB": database, "POSTGRES_USER": user},
        volumes=[f"{name}-data:/var/lib/postgresql/data"],
    )


def builtin_profiles() -> List[ProfileSpec]:
    """Return the product's profile catalog."""
    return [
        ProfileSpec(
            id="kaspa-node",
            name="Kaspa Node",
            description="Pruned rusty-kaspa node with public RPC endpoints",
            category="node",
            services=[
                ServiceSpec(
                    name="kaspa-node",
                    image="kaspanet/rusty-kaspad:latest",
                    startup_order=1,
                    ports=_NODE_PORTS,
                    environment={
                        "KASPA_NETWORK": "KASPA_NETWORK",
                        "KASPA_DATA_DIR": "KASPA_DATA_DIR",
                        "PUBLIC_NODE": "PUBLIC_NODE",
                    },
                    volumes=["kaspa-node-data:/app/data"],
                ),
            ],
            conflicts=["kaspa-archive-node"],
            ports=[16110, 16111, 17110],
            resources=ResourceRequirements(
                min_cpu=2, min_memory=4, min_disk=100,
                recommended_cpu=4, recommended_memory=8, recommended_disk=250,
            ),
            env_defaults=dict(_NODE_DEFAULTS, KASPA_DATA_DIR="/data/kaspa", PUBLIC_NODE="false"),
            data=[
                DataVolume(
                    type="blockchain",
                    name="Blockchain Data",
                    description="Kaspa blockchain data (pruned)",
                    estimated_size="50-150GB",
                    critical=True,
                ),
            ],
        ),
        ProfileSpec(
            id="kaspa-archive-node",
            name="Kaspa Archive Node",
            description="Non-pruning node keeping the complete block history",
            category="node",
            services=[
                ServiceSpec(
                    name="kaspa-archive-node",
                    image="kaspanet/rusty-kaspad:latest",
                    startup_order=1,
                    ports=_NODE_PORTS,
                    environment={
                        "KASPA_NETWORK": "KASPA_NETWORK",
                        "KASPA_ARCHIVE_DATA_DIR": "KASPA_ARCHIVE_DATA_DIR",
                    },
                    command=["kaspad", "--archival", "--utxoindex"],
                    volumes=["kaspa-archive-data:/app/data"],
                ),
            ],
            conflicts=["kaspa-node"],
            ports=[16110, 16111, 17110],
            resources=ResourceRequirements(
                min_cpu=8, min_memory=16, min_disk=1000,
                recommended_cpu=16, recommended_memory=32, recommended_disk=5000,
            ),
            env_defaults=dict(_NODE_DEFAULTS, KASPA_ARCHIVE_DATA_DIR="/data/kaspa-archive"),
            data=[
                DataVolume(
                    type="blockchain",
                    name="Archive Blockchain Data",
                    description="Complete Kaspa block history",
                    estimated_size="1TB+",
                    critical=True,
                ),
            ],
        ),
        ProfileSpec(
            id="kasia-app",
            name="Kasia Messaging App",
            description="Encrypted messaging web application",
            category="application",
            services=[
                ServiceSpec(
                    name="kasia-app",
                    image="kaspa-aio/kasia-app:latest",
                    build=BuildSpec(context="./services/kasia"),
                    startup_order=3,
                    ports=[PortBinding(setting="KASIA_APP_PORT", container=3000)],
                    environment={
                        "KASIA_INDEXER_URL": "KASIA_INDEXER_URL",
                        "KASPA_NETWORK": "KASPA_NETWORK",
                    },
                ),
            ],
            ports=[3001],
            resources=ResourceRequirements(
                min_cpu=1, min_memory=1, min_disk=5,
                recommended_cpu=2, recommended_memory=2, recommended_disk=10,
            ),
            env_defaults={
                "KASIA_APP_PORT": "3001",
                "KASIA_INDEXER_URL": "http://kasia-indexer:8080",
            },
            data=[
                DataVolume(type="app-data", name="Application Data", description="Kasia app local storage", estimated_size="< 100MB"),
            ],
        ),
        ProfileSpec(
            id="k-social-app",
            name="K-Social App",
            description="Decentralized social web application",
            category="application",
            services=[
                ServiceSpec(
                    name="k-social",
                    image="kaspa-aio/k-social:latest",
                    build=BuildSpec(context="./services/k-social"),
                    startup_order=3,
                    ports=[PortBinding(setting="K_SOCIAL_APP_PORT", container=3000)],
                    environment={
                        "K_INDEXER_URL": "K_INDEXER_URL",
                        "KASPA_NETWORK": "KASPA_NETWORK",
                    },
                ),
            ],
            ports=[3003],
            resources=ResourceRequirements(
                min_cpu=1, min_memory=1, min_disk=5,
                recommended_cpu=2, recommended_memory=2, recommended_disk=10,
            ),
            env_defaults={
                "K_SOCIAL_APP_PORT": "3003",
                "K_INDEXER_URL": "http://k-indexer:8080",
            },
            data=[
                DataVolume(type="app-data", name="Application Data", description="K-Social app local storage", estimated_size="< 100MB"),
            ],
        ),
        ProfileSpec(
            id="kaspa-explorer-bundle",
            name="Kaspa Explorer",
            description="Block explorer with its own indexer and database",
            category="indexer",
            services=[
                _timescaledb(
                    "timescaledb-explorer", "SIMPLY_KASPA_DB_PORT", "SIMPLY_KASPA_DB_PASSWORD",
                    database="simply_kaspa", user="simply_kaspa_user",
                ),
                ServiceSpec(
                    name="simply-kaspa-indexer",
                    image="supertypo/simply-kaspa-indexer:latest",
                    startup_order=2,
                    ports=[PortBinding(setting="SIMPLY_KASPA_INDEXER_PORT", container=8500)],
                    environment={
                        "DB_PASSWORD": "SIMPLY_KASPA_DB_PASSWORD",
                        "KASPA_NETWORK": "KASPA_NETWORK",
                    },
                    static_env={"DB_HOST": "timescaledb-explorer", "DB_NAME": "simply_kaspa"},
                    depends_on=["timescaledb-explorer"],
                ),
                ServiceSpec(
                    name="kaspa-explorer",
                    image="kaspa-aio/kaspa-explorer:latest",
                    build=BuildSpec(context="./services/kaspa-explorer"),
                    startup_order=3,
                    ports=[PortBinding(setting="KASPA_EXPLORER_PORT", container=80)],
                    environment={"KASPA_NETWORK": "KASPA_NETWORK"},
                    static_env={"API_URL": "http://simply-kaspa-indexer:8500"},
                    depends_on=["simply-kaspa-indexer"],
                ),
            ],
            ports=[3004, 3005, 5434],
            resources=ResourceRequirements(
                min_cpu=2, min_memory=4, min_disk=200,
                recommended_cpu=4, recommended_memory=8, recommended_disk=500,
            ),
            env_defaults={
                "KASPA_EXPLORER_PORT": "3004",
                "SIMPLY_KASPA_INDEXER_PORT": "3005",
                "SIMPLY_KASPA_DB_PORT": "5434",
            },
            secrets=["SIMPLY_KASPA_DB_PASSWORD"],
            data=[
                DataVolume(type="database", name="Explorer Database", description="TimescaleDB with indexed blocks and transactions", estimated_size="50-200GB", critical=True),
            ],
        ),
        ProfileSpec(
            id="kasia-indexer",
            name="Kasia Indexer",
            description="Indexer backing the Kasia messaging app",
            category="indexer",
            services=[
                ServiceSpec(
                    name="kasia-indexer",
                    image="kaspa-aio/kasia-indexer:latest",
                    build=BuildSpec(context="./services/kasia-indexer"),
                    startup_order=2,
                    ports=[PortBinding(setting="KASIA_INDEXER_PORT", container=8080)],
                    environment={
                        "KASPA_NODE_WBORSH_URL": "KASPA_NODE_WBORSH_URL",
                        "NETWORK_TYPE": "KASPA_NETWORK",
                    },
                    volumes=["kasia-indexer-data:/app/data"],
                ),
            ],
            ports=[3002],
            resources=ResourceRequirements(
                min_cpu=2, min_memory=4, min_disk=100,
                recommended_cpu=4, recommended_memory=8, recommended_disk=200,
            ),
            env_defaults={
                "KASIA_INDEXER_PORT": "3002",
                "KASPA_NODE_WBORSH_URL": "ws://kaspa-node:17110",
            },
            data=[
                DataVolume(type="index", name="Kasia Index", description="Indexed Kasia messages", estimated_size="10-50GB"),
            ],
        ),
        ProfileSpec(
            id="k-indexer-bundle",
            name="K-Indexer",
            description="K-Social indexer with its own database",
            category="indexer",
            services=[
                _timescaledb(
                    "timescaledb-kindexer", "K_SOCIAL_DB_PORT", "K_SOCIAL_DB_PASSWORD",
                    database="ksocial", user="k_social_user",
                ),
                ServiceSpec(
                    name="k-indexer",
                    image="kaspa-aio/k-indexer:latest",
                    build=BuildSpec(context="./services/k-indexer"),
                    startup_order=2,
                    ports=[PortBinding(setting="K_INDEXER_PORT", container=8080)],
                    environment={
                        "DB_PASSWORD": "K_SOCIAL_DB_PASSWORD",
                        "KASPA_NODE_WBORSH_URL": "KASPA_NODE_WBORSH_URL",
                    },
                    static_env={"DB_HOST": "timescaledb-kindexer", "DB_NAME": "ksocial"},
                    depends_on=["timescaledb-kindexer"],
                ),
            ],
            ports=[3006, 5433],
            resources=ResourceRequirements(
                min_cpu=2, min_memory=4, min_disk=200,
                recommended_cpu=4, recommended_memory=8, recommended_disk=500,
            ),
            env_defaults={
                "K_INDEXER_PORT": "3006",
                "K_SOCIAL_DB_PORT": "5433",
                "KASPA_NODE_WBORSH_URL": "ws://kaspa-node:17110",
            },
            secrets=["K_SOCIAL_DB_PASSWORD"],
            data=[
                DataVolume(type="database", name="K-Social Database", description="TimescaleDB with indexed K-Social content", estimated_size="10-100GB", critical=True),
            ],
        ),
        ProfileSpec(
            id="kaspa-stratum",
            name="Kaspa Stratum Bridge",
            description="Stratum bridge for solo mining against a local node",
            category="mining",
            services=[
                ServiceSpec(
                    name="kaspa-stratum",
                    image="kaspa-aio/kaspa-stratum-bridge:latest",
                    build=BuildSpec(context="./services/kaspa-stratum"),
                    startup_order=3,
                    ports=[PortBinding(setting="KASPA_STRATUM_PORT", container=5555)],
                    environment={
                        "MINING_ADDRESS": "MINING_ADDRESS",
                        "KASPA_NODE_RPC_URL": "KASPA_NODE_RPC_URL",
                    },
                    depends_on=["kaspa-node", "kaspa-archive-node"],
                ),
            ],
            prerequisites=["kaspa-node", "kaspa-archive-node"],
            ports=[5555],
            required_settings=["MINING_ADDRESS"],
            resources=ResourceRequirements(
                min_cpu=1, min_memory=1, min_disk=1,
                recommended_cpu=2, recommended_memory=2, recommended_disk=5,
            ),
            env_defaults={
                "KASPA_STRATUM_PORT": "5555",
                "KASPA_NODE_RPC_URL": "kaspa-node:16110",
                "MINING_ADDRESS": "",
            },
        ),
    ]

__version__ = "0.1.0"
__description__ = (
    "Keeps a Kubernetes pod's labels synchronized with the HA state of the process running in it"
)

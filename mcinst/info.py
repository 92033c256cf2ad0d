__app_name__ = "mc-instance-supervisor"
__package_name__ = "mc-instance-supervisor"
__description__ = "Supervisor for locally hosted Java game server instances"
__author__ = "mc-instance-supervisor contributors"
__author_email__ = ""
__author_url__ = ""
__license__ = "GPLv3"

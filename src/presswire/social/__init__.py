from .facebook import FacebookClient, SocialPublisher, cross_post

__all__ = ["FacebookClient", "SocialPublisher", "cross_post"]

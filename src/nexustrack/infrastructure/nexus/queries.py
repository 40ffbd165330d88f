# src/nexustrack/infrastructure/nexus/queries.py
# GraphQL documents sent to the Nexus Mods v2 API.

MOD_FIELDS = """
    uid
    modId
    name
    createdAt
    updatedAt
    summary
    status
    author
    uploader {
      name
      avatar
      memberId
    }
    pictureUrl
    modCategory {
      name
    }
    adult
    version
    downloads
    game {
      id
      domainName
      name
    }
"""

MODS = """
query NexusTrackMods($filter: ModsFilter, $sort: [ModsSort!], $offset: Int, $count: Int) {
  mods(filter: $filter, sort: $sort, offset: $offset, count: $count) {
    nodes {%s}
    totalCount
  }
}
""" % MOD_FIELDS

MODS_BY_UID = """
query NexusTrackModsByUid($uids: [ID!]!) {
  modsByUid(uids: $uids) {
    nodes {%s}
    totalCount
  }
}
""" % MOD_FIELDS

LEGACY_MODS_BY_DOMAIN = """
query NexusTrackLegacyMods($ids: [CompositeDomainWithIdInput!]!, $count: Int!, $offset: Int!) {
  legacyModsByDomain(ids: $ids, count: $count, offset: $offset) {
    nodes {%s}
  }
}
""" % MOD_FIELDS

MOD_FILES = """
query NexusTrackModFiles($modId: ID!, $gameId: ID!) {
  modFiles(modId: $modId, gameId: $gameId) {
    uid
    uri
    fileId
    name
    version
    category
    changelogText
    date
    description
  }
}
"""

COLLECTION = """
query NexusTrackCollection($slug: String, $adult: Boolean, $domain: String) {
  collection(slug: $slug, viewAdultContent: $adult, domainName: $domain) {
    id
    slug
    name
    summary
    category {
      name
    }
    adultContent
    collectionStatus
    endorsements
    totalDownloads
    lastPublishedAt
    latestPublishedRevision {
      revisionNumber
      fileSize
      modCount
      adultContent
      updatedAt
    }
    game {
      id
      domainName
      name
    }
    user {
      memberId
      avatar
      name
    }
    tileImage {
      url
      altText
      thumbnailUrl(size: small)
    }
  }
}
"""

COLLECTION_REVISIONS = """
query NexusTrackCollectionRevisions($slug: String, $domain: String) {
  collection(slug: $slug, viewAdultContent: true, domainName: $domain) {
    id
    slug
    name
    revisions {
      id
      revisionNumber
      fileSize
      modCount
      adultContent
      updatedAt
      collectionChangelog {
        description
      }
      status
    }
  }
}
"""

USER_BY_ID = """
query NexusTrackUserById($id: Int!) {
  user(id: $id) {
    name
    memberId
    avatar
    recognizedAuthor
    banned
    deleted
  }
}
"""

USER_BY_NAME = """
query NexusTrackUserByName($username: String!) {
  userByName(name: $username) {
    name
    memberId
    avatar
    recognizedAuthor
    banned
    deleted
  }
}
"""
